"""
Unit tests for the record types.

Record contract:
- Records are read-only once built
- Listing entries become complete records only through complete()
- An absent attachment is an absent attribute, not None or ''
"""

import json
import unittest

import thulearn


class TestNotification(unittest.TestCase):
    def test_complete(self) -> None:
        entry = thulearn.NotificationEntry('11', 'Welcome', '张老师', '2016-09-01')
        notification = entry.complete('Class starts Monday.')
        self.assertIsInstance(notification, thulearn.Notification)
        self.assertEqual(notification.to_dict(), {
            'id': '11', 'title': 'Welcome', 'author': '张老师', 'release_date': '2016-09-01',
            'content': 'Class starts Monday.'
        })

    def test_read_only(self) -> None:
        notification = thulearn.Notification('11', 'Welcome', '张老师', '2016-09-01', 'text')
        with self.assertRaises(AttributeError):
            notification.content = 'changed'
        with self.assertRaises(AttributeError):
            del notification.title


class TestHomework(unittest.TestCase):
    def setUp(self) -> None:
        self.entry = thulearn.HomeworkEntry('21', 'hom_wk_detail.jsp?id=21', 'HW1', '2016-09-05', '2016-09-12', True)

    def test_complete_drops_listing_url(self) -> None:
        homework = self.entry.complete(thulearn.HomeworkDetail('Exercises', 'http://learn/file?id=1'))
        self.assertFalse(hasattr(homework, 'url'))
        self.assertEqual(homework.attachment_url, 'http://learn/file?id=1')
        self.assertTrue(homework.has_attachment)

    def test_absent_attachment(self) -> None:
        homework = self.entry.complete(thulearn.HomeworkDetail('Exercises'))
        self.assertFalse(homework.has_attachment)
        with self.assertRaises(AttributeError):
            homework.attachment_url
        self.assertNotIn('attachment_url', homework.to_dict())
        self.assertNotIn('attachment_url', repr(homework))

    def test_empty_attachment_is_present(self) -> None:
        homework = self.entry.complete(thulearn.HomeworkDetail('Exercises', ''))
        self.assertTrue(homework.has_attachment)
        self.assertEqual(homework.to_dict()['attachment_url'], '')

    def test_equality_sees_absent_fields(self) -> None:
        with_attachment = self.entry.complete(thulearn.HomeworkDetail('Exercises', ''))
        without = self.entry.complete(thulearn.HomeworkDetail('Exercises'))
        self.assertNotEqual(with_attachment, without)
        self.assertEqual(without, self.entry.complete(thulearn.HomeworkDetail('Exercises')))


class TestCourse(unittest.TestCase):
    def test_collections_are_frozen(self) -> None:
        files = {'课件': [thulearn.FileEntry('http://learn/f?id=1', 'L1', '', '2016-09-01')]}
        course = thulearn.Course('101', 'Algebra', [], [], files)
        files['课件'].append(None)
        self.assertEqual(len(course.files['课件']), 1)
        self.assertIsInstance(course.notifications, tuple)
        with self.assertRaises(TypeError):
            course.files['new'] = ()

    def test_json(self) -> None:
        course = thulearn.Course('101', '线性代数', [], [], {'课件': []})
        self.assertEqual(json.loads(course.json()), {
            'id': '101', 'name': '线性代数', 'notifications': [], 'homework': [], 'files': {'课件': []}
        })

    def test_session_repr_hides_cookie_values(self) -> None:
        session = thulearn.SessionHandle('http://learn.example.edu', {'JSESSIONID': 'secret-value'})
        self.assertNotIn('secret-value', repr(session))


if __name__ == "__main__":
    unittest.main()
