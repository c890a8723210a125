from io import StringIO

from django.core.management import call_command
from django.test import SimpleTestCase, TestCase

from servicemarket import posts
from servicemarket.exceptions import AuthorizationError, ValidationError
from servicemarket.models import Notification, Post

from .helpers import make_profile


class LegacyImageParsingTests(SimpleTestCase):
    def test_empty_value_is_text(self):
        content = posts.parse_legacy_image_url('', caption='hello')
        self.assertEqual(content, posts.PostContent(type=Post.CONTENT_TEXT, content='hello'))
        self.assertEqual(posts.parse_legacy_image_url(None).type, Post.CONTENT_TEXT)

    def test_single_url(self):
        content = posts.parse_legacy_image_url(' https://cdn.example.com/a.jpg ')
        self.assertEqual(content.type, Post.CONTENT_IMAGE)
        self.assertEqual(content.urls, ['https://cdn.example.com/a.jpg'])

    def test_json_list_keeps_only_urls(self):
        raw = '["https://cdn.example.com/a.jpg", 42, "not a url", "http://cdn.example.com/b.png"]'
        content = posts.parse_legacy_image_url(raw)
        self.assertEqual(content.urls, ['https://cdn.example.com/a.jpg', 'http://cdn.example.com/b.png'])

    def test_json_list_without_urls_is_text(self):
        self.assertEqual(posts.parse_legacy_image_url('["x"]', caption='cap').content, 'cap')

    def test_data_url(self):
        content = posts.parse_legacy_image_url('data:image/png;base64,AAAA')
        self.assertEqual(content.type, Post.CONTENT_IMAGE)

    def test_plain_text_becomes_content(self):
        content = posts.parse_legacy_image_url('just words')
        self.assertEqual(content.type, Post.CONTENT_TEXT)
        self.assertEqual(content.content, 'just words')

    def test_broken_json_falls_back_to_text(self):
        self.assertEqual(posts.parse_legacy_image_url('[not json').type, Post.CONTENT_TEXT)


class PostTests(TestCase):
    def setUp(self):
        self.author = make_profile('author')
        self.reader = make_profile('reader')

    def test_create_sets_content_type(self):
        image_post = posts.create_post(self.author, image_urls=['https://cdn.example.com/a.jpg'])
        text_post = posts.create_post(self.author, caption='Open on Sunday')
        self.assertEqual(image_post.content_type, Post.CONTENT_IMAGE)
        self.assertEqual(text_post.content_type, Post.CONTENT_TEXT)

    def test_create_rejects_empty_and_bad_urls(self):
        with self.assertRaises(ValidationError):
            posts.create_post(self.author, caption='  ')
        with self.assertRaises(ValidationError):
            posts.create_post(self.author, image_urls=['ftp://files/a.jpg'])

    def test_only_author_edits_or_deletes(self):
        post = posts.create_post(self.author, caption='Before')
        with self.assertRaises(AuthorizationError):
            posts.edit_caption(post, self.reader, 'Hacked')
        with self.assertRaises(AuthorizationError):
            posts.soft_delete_post(post, self.reader)
        posts.edit_caption(post, self.author, 'After')
        posts.edit_caption(post, self.author, None)
        post.refresh_from_db()
        self.assertEqual(post.caption, 'After')

    def test_soft_delete_hides_post(self):
        post = posts.create_post(self.author, caption='Bye')
        posts.soft_delete_post(post, self.author)
        post.refresh_from_db()
        self.assertTrue(post.is_deleted)
        self.assertIsNotNone(post.deleted_at)
        with self.assertRaises(ValidationError):
            posts.like_post(post, self.reader)

    def test_like_once_and_notify_author(self):
        post = posts.create_post(self.author, caption='Like me')
        with self.captureOnCommitCallbacks(execute=True):
            self.assertTrue(posts.like_post(post, self.reader))
            self.assertFalse(posts.like_post(post, self.reader))
        self.assertEqual(post.likes.count(), 1)
        self.assertEqual(Notification.objects.filter(recipient=self.author, notification_type='like').count(), 1)
        self.assertTrue(posts.unlike_post(post, self.reader))
        self.assertFalse(posts.unlike_post(post, self.reader))

    def test_liking_own_post_does_not_notify(self):
        post = posts.create_post(self.author, caption='Mine')
        with self.captureOnCommitCallbacks(execute=True):
            posts.like_post(post, self.author)
        self.assertFalse(Notification.objects.exists())

    def test_comment(self):
        post = posts.create_post(self.author, caption='Thoughts?')
        comment = posts.add_comment(post, self.reader, '  Great  ')
        self.assertEqual(comment.text, 'Great')
        with self.assertRaises(ValidationError):
            posts.add_comment(post, self.reader, ' ')

    def test_normalize_legacy_posts(self):
        image = Post.objects.create(author=self.author, legacy_image_url='["https://cdn.example.com/a.jpg"]')
        text = Post.objects.create(author=self.author, legacy_image_url='remember me')
        untouched = Post.objects.create(author=self.author, caption='modern')

        call_command('normalize_post_media', stdout=StringIO())

        image.refresh_from_db()
        text.refresh_from_db()
        untouched.refresh_from_db()
        self.assertEqual(image.content_type, Post.CONTENT_IMAGE)
        self.assertEqual(image.image_urls, ['https://cdn.example.com/a.jpg'])
        self.assertEqual(text.caption, 'remember me')
        self.assertEqual(text.legacy_image_url, '')
        self.assertEqual(untouched.caption, 'modern')
        self.assertEqual(posts.normalize_legacy_posts(), 0)
