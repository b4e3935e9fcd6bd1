"""
HTML renderers shaped like the portal's pages, plus the sample courses served by the fake portal.
"""

from html import escape


def _page(body: str) -> str:
    return f"<html><head><meta charset='utf-8'></head><body>{body}</body></html>"


def _row(index: int, cells: list[str]) -> str:
    style = 'tr1' if index % 2 == 0 else 'tr2'
    return f"<tr class='{style}'>" + ''.join(f"<td>{cell}</td>" for cell in cells) + "</tr>"


def course_list_page(course_ids: list[str]) -> str:
    rows = ''.join(
        f"<tr><td><a href='/MultiLanguage/lesson/student/course_locate.jsp?course_id={course_id}'>"
        f"Course {course_id}</a></td></tr>"
        for course_id in course_ids
    )
    return _page(f"<div id='info_1'><table><tr><th>课程名称</th></tr>{rows}</table></div>")


def notification_list_page(name: str, notifications: list[dict]) -> str:
    rows = ''.join(
        _row(index, [
            str(index + 1),
            f"<a href='note_reply.jsp?bbs_type=课程公告&amp;id={item['id']}&amp;course_id=1'>  {escape(item['title'])} </a>",
            escape(item['author']),
            item['release_date']
        ])
        for index, item in enumerate(notifications)
    )
    return _page(
        f"<div id='info_1'><table><tr><td class='info_title'>\n  {escape(name)}  \n</td></tr></table></div>"
        f"<table id='table_box'><tr><th>序号</th><th>标题</th><th>发布人</th><th>发布时间</th></tr>{rows}</table>"
    )


def notification_detail_page(content: str) -> str:
    return _page(
        "<table id='table_box'>"
        "<tr><td>标题</td><td>Announcement</td></tr>"
        f"<tr><td>内容</td><td>{escape(content)}</td></tr>"
        "</table>"
    )


def homework_list_page(homework: list[dict]) -> str:
    rows = ''.join(
        _row(index, [
            f"<a href='hom_wk_detail.jsp?id={item['id']}&amp;course_id=1&amp;rec_id=null'>{escape(item['title'])}</a>",
            item['release_date'],
            item['deadline'],
            item['status'],
            '&nbsp;'
        ])
        for index, item in enumerate(homework)
    )
    return _page(
        "<div id='info_1'>"
        "<table><tr><td>课程作业</td></tr></table>"
        f"<table><tr><th>标题</th><th>生效日期</th><th>截止日期</th><th>提交状态</th><th></th></tr>{rows}</table>"
        "</div>"
    )


def homework_detail_page(description: str, attachment_href: str = None) -> str:
    attachment = f"<a href='{attachment_href}'>attachment</a>" if attachment_href is not None else '无相关文件'
    return _page(
        "<table id='table_box'>"
        "<tr><td>作业标题</td><td>Homework</td></tr>"
        f"<tr><td>作业说明</td><td><textarea name='description'>{escape(description)}</textarea></td></tr>"
        f"<tr><td>作业附件</td><td>{attachment}</td></tr>"
        "</table>"
    )


def file_list_page(categories: list[tuple[str, list[dict]]]) -> str:
    labels = ''.join(f"<td class='textTD'>{escape(label)}</td>" for label, _ in categories)
    boxes = ''.join(
        "<div class='layerbox'><table>"
        "<tr><th>序号</th><th>文件名</th><th>说明</th><th>大小</th><th>上传时间</th></tr>" +
        ''.join(
            _row(index, [
                str(index + 1),
                f"<a href='{item['href']}'>{escape(item['title'])}</a>",
                escape(item['description']),
                '1M',
                item['release_date']
            ])
            for index, item in enumerate(files)
        ) +
        "</table></div>"
        for _, files in categories
    )
    return _page(f"<table><tr>{labels}</tr></table>{boxes}")


COURSES = {
    '101': {
        'name': '线性代数(1)(2016-2017秋季学期)',
        'notifications': [
            {'id': '11', 'title': 'Welcome', 'author': '张老师', 'release_date': '2016-09-01',
             'content': 'Class starts Monday.'},
            {'id': '12', 'title': 'Midterm', 'author': '张老师', 'release_date': '2016-10-20',
             'content': 'Midterm is in week 8.'},
            {'id': '13', 'title': 'Room change', 'author': '助教', 'release_date': '2016-11-02',
             'content': 'Moved to 6A201.'},
        ],
        'homework': [
            {'id': '21', 'title': 'HW1', 'release_date': '2016-09-05', 'deadline': '2016-09-12',
             'status': '已经提交', 'description': 'Exercises 1.1-1.5',
             'attachment': '/uploadFile/downloadFile_student.jsp?file_id=901'},
            {'id': '22', 'title': 'HW2', 'release_date': '2016-09-12', 'deadline': '2016-09-19',
             'status': '尚未提交', 'description': 'Exercises 2.1-2.3', 'attachment': None},
        ],
        'files': [
            ('电子教案', [
                {'href': '/uploadFile/downloadFile_student.jsp?file_id=801', 'title': 'Lecture 1',
                 'description': 'Vectors', 'release_date': '2016-09-01'},
                {'href': '/uploadFile/downloadFile_student.jsp?file_id=802', 'title': 'Lecture 2',
                 'description': 'Matrices', 'release_date': '2016-09-08'},
            ]),
            ('课程文件', [
                {'href': '/uploadFile/downloadFile_student.jsp?file_id=803', 'title': 'Syllabus',
                 'description': '', 'release_date': '2016-09-01'},
            ]),
        ],
    },
    '102': {
        'name': '数据结构',
        'notifications': [
            {'id': '31', 'title': 'First lab', 'author': '王老师', 'release_date': '2016-09-03',
             'content': 'Lab 1 is online.'},
        ],
        'homework': [],
        'files': [],
    },
    '103': {
        'name': 'Operating Systems',
        'notifications': [],
        'homework': [
            {'id': '41', 'title': 'Shell', 'release_date': '2016-09-10', 'deadline': '2016-09-30',
             'status': '尚未提交', 'description': 'Write a shell.',
             'attachment': '/uploadFile/downloadFile_student.jsp?file_id=902'},
        ],
        'files': [
            ('作业参考', []),
        ],
    },
}

ATTACHMENTS = {
    '901': ('hw1.pdf', b'%PDF-1.4\x00\xff\xfe binary body'),
    '902': ('shell.tar.gz', bytes(range(256)) * 4),
}
