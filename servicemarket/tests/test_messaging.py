from datetime import timedelta

from django.test import TestCase
from django.utils import timezone

from servicemarket import messaging
from servicemarket.exceptions import AuthorizationError, ValidationError
from servicemarket.models import Message, Notification

from .helpers import make_profile


class MessagingTests(TestCase):
    def setUp(self):
        self.alice = make_profile('alice')
        self.bob = make_profile('bob')
        self.carol = make_profile('carol')

    def send(self, sender, receiver, text, minutes_ago=0):
        message = messaging.send_message(sender, receiver, text)
        Message.objects.filter(pk=message.pk).update(created_at=timezone.now() - timedelta(minutes=minutes_ago))
        return message

    def test_send_notifies_receiver(self):
        with self.captureOnCommitCallbacks(execute=True):
            message = messaging.send_message(self.alice, self.bob, '  Are you free on Friday?  ')
        self.assertEqual(message.content, 'Are you free on Friday?')
        note = Notification.objects.get(recipient=self.bob)
        self.assertEqual(note.notification_type, Notification.TYPE_MESSAGE)
        self.assertEqual(note.entity_id, str(message.pk))
        self.assertEqual(note.message, 'You received a message from alice')

    def test_send_rejects_empty_long_and_self(self):
        with self.assertRaises(ValidationError):
            messaging.send_message(self.alice, self.bob, '   ')
        with self.assertRaises(ValidationError):
            messaging.send_message(self.alice, self.bob, 'x' * (messaging.MAX_LENGTH + 1))
        with self.assertRaises(ValidationError):
            messaging.send_message(self.alice, self.alice, 'Note to self')
        self.assertFalse(Message.objects.exists())

    def test_conversation_shows_both_sides_and_marks_read(self):
        self.send(self.alice, self.bob, 'Hi', minutes_ago=3)
        self.send(self.bob, self.alice, 'Hello', minutes_ago=2)
        self.send(self.alice, self.bob, 'Can you come Friday?', minutes_ago=1)
        self.send(self.carol, self.bob, 'Unrelated')

        thread = messaging.conversation(self.bob, self.alice)

        self.assertEqual([m.content for m in thread], ['Hi', 'Hello', 'Can you come Friday?'])
        self.assertEqual(messaging.unread_count(self.bob), 1)
        self.assertEqual(messaging.unread_count(self.alice), 1)

    def test_conversations_summarise_each_partner(self):
        self.send(self.alice, self.bob, 'Old', minutes_ago=10)
        self.send(self.carol, self.bob, 'From carol', minutes_ago=5)
        self.send(self.alice, self.bob, 'Newest from alice', minutes_ago=1)
        self.send(self.bob, self.carol, 'Reply to carol', minutes_ago=3)

        summaries = messaging.conversations(self.bob)

        self.assertEqual([s.partner for s in summaries], [self.alice, self.carol])
        self.assertEqual(summaries[0].last_message.content, 'Newest from alice')
        self.assertEqual(summaries[0].unread, 2)
        self.assertEqual(summaries[1].last_message.content, 'Reply to carol')
        self.assertEqual(summaries[1].unread, 1)

    def test_only_sender_deletes_and_text_is_replaced(self):
        message = messaging.send_message(self.alice, self.bob, 'Wrong address, sorry')
        with self.assertRaises(AuthorizationError):
            messaging.delete_message(message, self.bob)

        messaging.delete_message(message, self.alice)
        messaging.delete_message(message, self.alice)

        message.refresh_from_db()
        self.assertTrue(message.is_deleted)
        self.assertIsNotNone(message.deleted_at)
        self.assertEqual(message.content, Message.DELETED_TEXT)
        self.assertEqual(len(messaging.conversation(self.bob, self.alice)), 1)
