from __future__ import annotations
from types import MappingProxyType
from typing import AsyncGenerator, Awaitable, Iterable, Mapping, Union
import aiohttp
import asyncio
import functools
import inspect
import json as _json
import logging
import lxml.etree
import lxml.html
import re
import yarl

# ALIASES

CourseId = str
FileListing = dict[str, list["FileEntry"]]

# CONSTANTS

BASE_URL = 'http://learn.tsinghua.edu.cn'
LOGIN_PATH = '/MultiLanguage/lesson/teacher/loginteacher.jsp'
COURSE_LIST_PATH = '/MultiLanguage/lesson/student/MyCourse.jsp'
NOTIFICATION_LIST_PATH = '/MultiLanguage/public/bbs/getnoteid_student.jsp'
NOTIFICATION_DETAIL_PATH = '/MultiLanguage/public/bbs/note_reply.jsp'
HOMEWORK_LIST_PATH = '/MultiLanguage/lesson/student/hom_wk_brw.jsp'
HOMEWORK_DETAIL_DIR = '/MultiLanguage/lesson/student/'
FILE_LIST_PATH = '/MultiLanguage/lesson/student/download.jsp'

MAX_CONCURRENT_REQUESTS = 8
NETWORK_TIMEOUT = 15
DOWNLOAD_CHUNK_SIZE = 64 * 1024
PAGE_ENCODING = None  # None lets aiohttp use the charset the server declares
HEADER_ENCODING = 'gbk'
NOTIFICATION_BBS_TYPE = '课程公告'
SUBMITTED_STATUS = '已经提交'
ROW_CLASSES = ('tr1', 'tr2')


# EXCEPTIONS

class LearnError(Exception):
    """
    Base class of every error raised by this module.
    """

    def __init__(self, message: str, status: int = None):
        super().__init__(message)
        self.message = message
        self.status = status

    def __str__(self):
        return self.message


class AuthError(LearnError):
    """
    Could not establish a session with the portal.
    """


class TransportError(LearnError):
    """
    A single HTTP call failed, or received an unexpected HTTP response code.
    """


class ExtractionError(LearnError):
    """
    A page did not contain an element its extractor requires. Usually a sign of an expired or invalid session.
    """


class AggregationError(LearnError):
    """
    A course could not be assembled because one of its waves failed. Wraps the first failure observed.
    """

    def __init__(self, message: str, course_id: CourseId = None, cause: BaseException = None):
        super().__init__(message, getattr(cause, 'status', None))
        self.course_id = course_id
        self.cause = cause


class ResolutionError(LearnError):
    """
    The header probe failed, or its response carries no Content-Disposition filename.
    """


class FetchError(LearnError):
    """
    An attachment body could not be fetched.
    """


# DECORATORS

def default_connector(func):
    """
    Implements a decorator that checks if a connector isn't passed for a decorated coroutine or async generator. When
    connector is None, it assigns a connector, and closes it after the coroutine or async generator ends.
    """

    @functools.wraps(func)
    def wrapped(*args, **kwargs):
        has_internal_connector = False
        if kwargs.get('connector', None) is None:
            connector = aiohttp.TCPConnector(limit=MAX_CONCURRENT_REQUESTS)
            kwargs['connector'] = connector
            has_internal_connector = True
        if inspect.isasyncgenfunction(func):
            async def inner():
                try:
                    async for result in func(*args, **kwargs):
                        yield result
                finally:
                    if has_internal_connector:
                        await connector.close()
        else:
            # Assume async function
            async def inner():
                try:
                    return await func(*args, **kwargs)
                finally:
                    if has_internal_connector:
                        await connector.close()
        return inner()

    return wrapped


# RECORDS

class _Record:
    """
    Read-only record. Fields are the class's __slots__; a slot that was never filled is an absent field and is left
    out of to_dict().
    """

    __slots__ = ()

    def __init__(self, **fields):
        for name, value in fields.items():
            object.__setattr__(self, name, value)

    def __setattr__(self, name, value):
        raise AttributeError(f"{self.__class__.__qualname__} is read-only.")

    def __delattr__(self, name):
        raise AttributeError(f"{self.__class__.__qualname__} is read-only.")

    def _fields(self) -> list[str]:
        return [name for name in self.__slots__ if hasattr(self, name)]

    def __eq__(self, other):
        if type(other) is not type(self):
            return NotImplemented
        return self._fields() == other._fields() and all(
            getattr(self, name) == getattr(other, name) for name in self._fields()
        )

    def __repr__(self):
        return (self.__class__.__qualname__ + "(" +
                ", ".join(f"{name}={getattr(self, name)!r}" for name in self._fields()) + ")")

    def to_dict(self) -> dict:
        """
        Returns the record as plain dicts and lists, recursing into nested records.
        """

        return {name: _plain(getattr(self, name)) for name in self._fields()}


def _plain(value):
    if isinstance(value, _Record):
        return value.to_dict()
    if isinstance(value, Mapping):
        return {key: _plain(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(item) for item in value]
    return value


class SessionHandle(_Record):
    """
    Credential carrier returned by login(). It is bound to the origin it authenticated against and is never mutated,
    so a single handle may be shared by any number of concurrent fetches.

    base_url:   origin of the portal, e.g. 'http://learn.tsinghua.edu.cn'.
    cookies:    cookie name to value, as collected while logging in.
    """

    __slots__ = 'base_url', 'cookies'

    def __init__(self, base_url: str, cookies: Mapping[str, str]):
        super().__init__(base_url=base_url.rstrip('/'), cookies=MappingProxyType(dict(cookies)))

    def __repr__(self):
        # Cookie values are credentials.
        return self.__class__.__qualname__ + f"(base_url={self.base_url!r}, cookies={sorted(self.cookies)})"

    def url(self, path: str) -> str:
        return self.base_url + path

    def cookie_string(self, url: str = None) -> str:
        """
        Exports the cookies as the literal value of a Cookie request header. If url is given and points to a different
        host than the session's, an empty string is returned so credentials never leak to another host.
        """

        if url is not None and yarl.URL(url).host != yarl.URL(self.base_url).host:
            return ''
        return '; '.join(f"{name}={value}" for name, value in self.cookies.items())


class NotificationEntry(_Record):
    """
    An announcement row of the notification listing page. Turned into a Notification by complete() once its
    content is fetched.
    """

    __slots__ = 'id', 'title', 'author', 'release_date'

    def __init__(self, id: str, title: str, author: str, release_date: str):
        super().__init__(id=id, title=title, author=author, release_date=release_date)

    def complete(self, content: str) -> Notification:
        return Notification(self.id, self.title, self.author, self.release_date, content)


class Notification(_Record):
    __slots__ = 'id', 'title', 'author', 'release_date', 'content'

    def __init__(self, id: str, title: str, author: str, release_date: str, content: str):
        super().__init__(id=id, title=title, author=author, release_date=release_date, content=content)


class HomeworkEntry(_Record):
    """
    A homework row of the homework listing page.

    url:    relative link to the homework's detail page. It is only used to fetch the detail and is dropped by
            complete().
    """

    __slots__ = 'id', 'url', 'title', 'release_date', 'deadline', 'submitted'

    def __init__(self, id: str, url: str, title: str, release_date: str, deadline: str, submitted: bool):
        super().__init__(id=id, url=url, title=title, release_date=release_date, deadline=deadline,
                         submitted=submitted)

    def complete(self, detail: HomeworkDetail) -> Homework:
        return Homework(self.id, self.title, self.release_date, self.deadline, self.submitted, detail.description,
                        getattr(detail, 'attachment_url', None))


class HomeworkDetail(_Record):
    """
    Fields of a homework detail page. attachment_url is left unset when the page has no attachment.
    """

    __slots__ = 'description', 'attachment_url'

    def __init__(self, description: str, attachment_url: str = None):
        if attachment_url is None:
            super().__init__(description=description)
        else:
            super().__init__(description=description, attachment_url=attachment_url)

    @property
    def has_attachment(self) -> bool:
        return hasattr(self, 'attachment_url')


class Homework(_Record):
    """
    A homework assignment. The attachment_url attribute only exists when the assignment has an attachment; check with
    has_attachment or hasattr().
    """

    __slots__ = 'id', 'title', 'release_date', 'deadline', 'submitted', 'description', 'attachment_url'

    def __init__(self, id: str, title: str, release_date: str, deadline: str, submitted: bool, description: str,
                 attachment_url: str = None):
        fields = dict(id=id, title=title, release_date=release_date, deadline=deadline, submitted=submitted,
                      description=description)
        if attachment_url is not None:
            fields['attachment_url'] = attachment_url
        super().__init__(**fields)

    @property
    def has_attachment(self) -> bool:
        return hasattr(self, 'attachment_url')


class FileEntry(_Record):
    __slots__ = 'url', 'title', 'description', 'release_date'

    def __init__(self, url: str, title: str, description: str, release_date: str):
        super().__init__(url=url, title=title, description=description, release_date=release_date)


class Course(_Record):
    """
    Everything aggregated for one course. A Course only exists when its name, notifications, homework and files were
    all fetched successfully.

    id:             course ID as found on the course listing page.
    name:           course title.
    notifications:  tuple of Notification in page order.
    homework:       tuple of Homework in page order.
    files:          read-only mapping of category label to tuple of FileEntry, in page order.
    """

    __slots__ = 'id', 'name', 'notifications', 'homework', 'files'

    def __init__(self, id: CourseId, name: str, notifications: Iterable[Notification], homework: Iterable[Homework],
                 files: Mapping[str, Iterable[FileEntry]]):
        super().__init__(
            id=id,
            name=name,
            notifications=tuple(notifications),
            homework=tuple(homework),
            files=MappingProxyType({label: tuple(entries) for label, entries in files.items()})
        )

    def json(self) -> str:
        """
        Return the course in json-formatted str representation.
        """

        return _json.dumps(self.to_dict(), ensure_ascii=False)


# EXTRACTORS

def _has_class(name: str) -> str:
    return f"contains(concat(' ', normalize-space(@class), ' '), ' {name} ')"


# Listing rows are styled alternately with one of ROW_CLASSES; header and filler rows are not.
_ROW_FILTER = f"[{' or '.join(_has_class(name) for name in ROW_CLASSES)}]"
_FILENAME_RE = re.compile(r'filename\s*=\s*(?:"(?P<quoted>[^"]*)"|(?P<bare>[^;\s]+))', re.IGNORECASE)


def _parse(markup: Union[str, bytes]) -> lxml.html.HtmlElement:
    try:
        return lxml.html.fromstring(markup)
    except (lxml.etree.ParserError, ValueError) as err:
        raise ExtractionError(f"Could not parse page: {err}") from err


def _text(element: lxml.html.HtmlElement) -> str:
    return element.text_content().strip()


def _cells(row: lxml.html.HtmlElement) -> list[lxml.html.HtmlElement]:
    return row.xpath(".//td")


def _cell(cells: list[lxml.html.HtmlElement], index: int, what: str) -> lxml.html.HtmlElement:
    try:
        return cells[index]
    except IndexError:
        raise ExtractionError(f"{what} row has {len(cells)} columns, expected at least {index + 1}.") from None


def _query_value(href: str, key: str, what: str) -> str:
    value = yarl.URL(href).query.get(key)
    if value is None:
        raise ExtractionError(f"{what} link {href!r} has no '{key}' parameter.")
    return value


def _absolute(base_url: str, href: str) -> str:
    return str(yarl.URL(base_url.rstrip('/') + '/').join(yarl.URL(href)))


def extract_course_ids(markup: Union[str, bytes]) -> list[CourseId]:
    """
    Returns course IDs linked from the course listing page, in page order. Links without a course_id are skipped.
    """

    html = _parse(markup)
    course_ids = []
    for href in html.xpath("//*[@id='info_1']//tr//a/@href"):
        course_id = yarl.URL(href).query.get('course_id')
        if course_id is not None:
            course_ids.append(course_id)
    return course_ids


def extract_course_name(markup: Union[str, bytes]) -> str:
    html = _parse(markup)
    titles = html.xpath(f"//*[@id='info_1']//*[{_has_class('info_title')}]")
    if not titles:
        raise ExtractionError("Course name not found on page.")
    return ''.join(title.text_content() for title in titles).strip()


def extract_notifications(markup: Union[str, bytes]) -> list[NotificationEntry]:
    """
    Returns announcement rows of the notification listing page. Only rows styled 'tr1' or 'tr2' are announcements.
    """

    html = _parse(markup)
    entries = []
    for table in html.xpath("//*[@id='table_box']"):
        for row in table.xpath(".//tr" + _ROW_FILTER):
            cells = _cells(row)
            links = _cell(cells, 1, "Notification").xpath(".//a")
            if not links or links[0].get('href') is None:
                raise ExtractionError("Notification row has no link.")
            entries.append(NotificationEntry(
                id=_query_value(links[0].get('href'), 'id', "Notification"),
                title=_text(links[0]),
                author=_text(_cell(cells, 2, "Notification")),
                release_date=_text(_cell(cells, 3, "Notification"))
            ))
    return entries


def extract_notification_content(markup: Union[str, bytes]) -> str:
    html = _parse(markup)
    rows = html.xpath("//*[@id='table_box']//tr")
    if len(rows) < 2:
        raise ExtractionError("Notification content row not found.")
    return _text(_cell(_cells(rows[1]), 1, "Notification content"))


def extract_homework(markup: Union[str, bytes]) -> list[HomeworkEntry]:
    """
    Returns homework rows of the homework listing page. The rows live in the second table inside '#info_1'; the
    first one is the page header. A row counts as submitted only if its status column reads exactly SUBMITTED_STATUS.
    """

    html = _parse(markup)
    tables = html.xpath("//*[@id='info_1']//table")
    if len(tables) < 2:
        return []
    entries = []
    for row in tables[1].xpath(".//tr" + _ROW_FILTER):
        cells = _cells(row)
        title_cell = _cell(cells, 0, "Homework")
        links = title_cell.xpath(".//a")
        if not links or links[0].get('href') is None:
            raise ExtractionError("Homework row has no link.")
        url = links[0].get('href')
        entries.append(HomeworkEntry(
            id=_query_value(url, 'id', "Homework"),
            url=url,
            title=_text(title_cell),
            release_date=_text(_cell(cells, 1, "Homework")),
            deadline=_text(_cell(cells, 2, "Homework")),
            submitted=_text(_cell(cells, 3, "Homework")) == SUBMITTED_STATUS
        ))
    return entries


def extract_homework_detail(markup: Union[str, bytes], base_url: str = BASE_URL) -> HomeworkDetail:
    """
    Returns the description and the attachment link of a homework detail page.

    The description is read from the textarea form field rather than the displayed text. The attachment link is
    made absolute against base_url; when the attachment cell has no link, the detail has no attachment_url.
    """

    html = _parse(markup)
    rows = html.xpath("//*[@id='table_box']//tr")
    if len(rows) < 2:
        raise ExtractionError("Homework description row not found.")
    textareas = _cell(_cells(rows[1]), 1, "Homework description").xpath(".//textarea")
    if not textareas:
        raise ExtractionError("Homework description field not found.")
    description = textareas[0].value or ''
    attachment_url = None
    if len(rows) > 2:
        cells = _cells(rows[2])
        links = cells[1].xpath(".//a[@href]") if len(cells) > 1 else []
        if links:
            attachment_url = _absolute(base_url, links[0].get('href'))
    return HomeworkDetail(description, attachment_url)


def extract_files(markup: Union[str, bytes], base_url: str = BASE_URL) -> FileListing:
    """
    Returns downloadable files grouped by category, both in page order.

    Category labels are the '.textTD' elements, and the n-th label names the n-th '.layerbox' group.
    """

    html = _parse(markup)
    labels = [_text(label) for label in html.xpath(f"//*[{_has_class('textTD')}]")]
    boxes = html.xpath(f"//*[{_has_class('layerbox')}]")
    if len(labels) < len(boxes):
        raise ExtractionError(f"Found {len(boxes)} file groups but only {len(labels)} category labels.")
    listing = {}
    for label, box in zip(labels, boxes):
        if label in listing:
            logging.warning(f"Duplicate file category {label!r}, keeping the later group.")
        files = []
        for row in box.xpath(".//table//tr" + _ROW_FILTER):
            cells = _cells(row)
            title_cell = _cell(cells, 1, "File")
            links = title_cell.xpath(".//a[@href]")
            if not links:
                raise ExtractionError("File row has no link.")
            files.append(FileEntry(
                url=_absolute(base_url, links[0].get('href')),
                title=_text(title_cell),
                description=_text(_cell(cells, 2, "File")),
                release_date=_text(_cell(cells, 4, "File"))
            ))
        listing[label] = files
    return listing


def parse_save_name(header_block: bytes, encoding: str = HEADER_ENCODING) -> str:
    """
    Returns the filename carried by the Content-Disposition line of a raw response header block.

    The portal encodes non-ASCII filenames in a regional byte encoding, so the block is decoded with the given
    encoding instead of UTF-8. If several Content-Disposition lines are present, the last one wins.

    header_block:   raw header bytes, one 'Name: value' per line.
    encoding:       encoding the server used for the filename parameter.
    """

    text = header_block.decode(encoding, errors='replace')
    save_name = None
    for line in text.splitlines():
        name, sep, value = line.partition(':')
        if not sep or name.strip().lower() != 'content-disposition':
            continue
        match = _FILENAME_RE.search(value)
        if match:
            save_name = match.group('quoted') if match.group('quoted') is not None else match.group('bare')
    if save_name is None:
        raise ResolutionError("No Content-Disposition filename in response headers.")
    return save_name


# COROUTINES

def _client(connector: aiohttp.BaseConnector, timeout: float = NETWORK_TIMEOUT, *,
            cookie_jar: aiohttp.abc.AbstractCookieJar = None) -> aiohttp.ClientSession:
    """
    Returns a ClientSession on a shared connector. Unless another cookie jar is passed, responses cannot set cookies;
    cookies only come from the SessionHandle.
    """

    return aiohttp.ClientSession(
        connector=connector,
        connector_owner=False,
        cookie_jar=cookie_jar if cookie_jar is not None else aiohttp.DummyCookieJar(),
        timeout=aiohttp.ClientTimeout(sock_connect=timeout, sock_read=timeout)
    )


async def _request(client: aiohttp.ClientSession, session: SessionHandle, url: str, *,
                   method: str = 'GET',
                   params: Union[dict, list, str] = None,
                   data: Union[aiohttp.FormData, dict] = None,
                   binary: bool = False) -> Union[str, bytes]:
    """
    Performs one HTTP request under the session and returns the body, decoded to text unless binary is True.

    A page whose bytes do not match its charset raises TransportError like any other failed request.

    client:     ClientSession to send the request with.
    session:    SessionHandle whose cookies are attached, or None before login.
    url:        URL to perform HTTP request to.
    method:     HTTP method, e.g. 'GET' or 'POST'.
    params:     key-value encoded in the URL query string.
    data:       key-value form-encoded in the request body.
    binary:     if True, the body is returned as bytes without any decoding.
    """

    cookies = dict(session.cookies) if session is not None else None
    try:
        async with client.request(method, url, params=params, data=data, cookies=cookies) as response:
            if response.status != 200:
                raise TransportError(f"Response status not OK for {url}. Received {response.status}.",
                                     response.status)
            if binary:
                return await response.read()
            try:
                return await response.text(encoding=PAGE_ENCODING)
            except (UnicodeDecodeError, LookupError) as err:
                raise TransportError(f"Could not decode response from {url}: {err!r}") from err
    except (aiohttp.ClientError, asyncio.TimeoutError) as err:
        raise TransportError(f"Request to {url} failed: {err!r}") from err


async def _wave(aws: Iterable[Awaitable]) -> list:
    """
    Runs awaitables concurrently and returns their results in input order.

    The wave fails fast: as soon as one awaitable raises, its unfinished siblings are cancelled and the first failure
    (in input order, among those that failed) is raised. If the wave itself is cancelled, every task is cancelled
    before the cancellation propagates.
    """

    tasks = [asyncio.ensure_future(aw) for aw in aws]
    if not tasks:
        return []
    try:
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
    except asyncio.CancelledError:
        for task in tasks:
            task.cancel()
        await asyncio.wait(tasks)
        _exceptions(tasks)
        raise
    if pending:
        for task in pending:
            task.cancel()
        await asyncio.wait(pending)
    # Siblings that raised while being cancelled are read too, but only failures from the first wait count.
    exceptions = _exceptions(tasks)
    for task, exception in zip(tasks, exceptions):
        if task in done and exception is not None:
            raise exception
    return [task.result() for task in tasks]


def _exceptions(tasks: list[asyncio.Future]) -> list[Union[BaseException, None]]:
    """
    Returns the exception of each finished task, None for a task that succeeded or was cancelled. Reading them marks
    them retrieved, so asyncio does not log them as never retrieved.
    """

    return [None if task.cancelled() else task.exception() for task in tasks]


@default_connector
async def login(username: str, password: str, *, base_url: str = BASE_URL, timeout: float = NETWORK_TIMEOUT,
                connector: aiohttp.TCPConnector = None) -> SessionHandle:
    """
    Logs in to the portal and returns a SessionHandle carrying the session cookies.

    The portal answers a wrong password with the same redirect as a right one, so credentials are not checked here.
    Invalid credentials surface later as ExtractionError on protected pages.

    username:   portal user ID.
    password:   portal password.
    base_url:   origin of the portal.
    timeout:    seconds allowed for the login request.
    connector:  pass aiohttp.TCPConnector to share connector for connection keepaliving.
    """

    base_url = base_url.rstrip('/')
    jar = aiohttp.CookieJar(unsafe=True)
    async with _client(connector, timeout, cookie_jar=jar) as client:
        try:
            await _request(client, None, base_url + LOGIN_PATH, method='POST',
                           data={'userid': username, 'userpass': password}, binary=True)
        except TransportError as err:
            raise AuthError(f"Login failed: {err}", err.status) from err
    cookies = {morsel.key: morsel.value for morsel in jar}
    logging.info(f"Logged in to {base_url} for user ID: {username}.")
    logging.debug(f"Session cookies: {sorted(cookies)}")
    return SessionHandle(base_url, cookies)


@default_connector
async def get_course_ids(session: SessionHandle, *, timeout: float = NETWORK_TIMEOUT,
                         connector: aiohttp.TCPConnector = None) -> list[CourseId]:
    """
    Returns the IDs of the courses listed on the user's course page.
    """

    async with _client(connector, timeout) as client:
        html = await _request(client, session, session.url(COURSE_LIST_PATH))
    course_ids = extract_course_ids(html)
    logging.info(f"{len(course_ids)} course IDs parsed.")
    logging.debug(f"course_ids: {course_ids}")
    return course_ids


async def _course_name(client: aiohttp.ClientSession, session: SessionHandle, course_id: CourseId) -> str:
    html = await _request(client, session, session.url(NOTIFICATION_LIST_PATH), params={'course_id': course_id})
    return extract_course_name(html)


async def _course_notifications(client: aiohttp.ClientSession, session: SessionHandle, course_id: CourseId) \
        -> list[Notification]:
    """
    Fetches the notification listing, then every announcement's content in a second wave.
    """

    html = await _request(client, session, session.url(NOTIFICATION_LIST_PATH), params={'course_id': course_id})
    entries = extract_notifications(html)

    async def complete(t_entry: NotificationEntry) -> Notification:
        t_html = await _request(client, session, session.url(NOTIFICATION_DETAIL_PATH), params={
            'bbs_type': NOTIFICATION_BBS_TYPE,
            'id': t_entry.id,
            'course_id': course_id
        })
        return t_entry.complete(extract_notification_content(t_html))

    notifications = await _wave(complete(entry) for entry in entries)
    logging.info(f"{len(notifications)} notifications parsed for course {course_id}.")
    return notifications


async def _course_homework(client: aiohttp.ClientSession, session: SessionHandle, course_id: CourseId) \
        -> list[Homework]:
    """
    Fetches the homework listing, then every assignment's detail page in a second wave.
    """

    html = await _request(client, session, session.url(HOMEWORK_LIST_PATH), params={'course_id': course_id})
    entries = extract_homework(html)

    async def complete(t_entry: HomeworkEntry) -> Homework:
        t_html = await _request(client, session, _absolute(session.url(HOMEWORK_DETAIL_DIR), t_entry.url))
        return t_entry.complete(extract_homework_detail(t_html, session.base_url))

    homework = await _wave(complete(entry) for entry in entries)
    logging.info(f"{len(homework)} homework parsed for course {course_id}.")
    return homework


async def _course_files(client: aiohttp.ClientSession, session: SessionHandle, course_id: CourseId) -> FileListing:
    html = await _request(client, session, session.url(FILE_LIST_PATH), params={'course_id': course_id})
    files = extract_files(html, session.base_url)
    logging.info(f"{sum(len(group) for group in files.values())} files in {len(files)} categories parsed for "
                 f"course {course_id}.")
    return files


async def _aggregate_course(client: aiohttp.ClientSession, session: SessionHandle, course_id: CourseId) -> Course:
    try:
        name, notifications, homework, files = await _wave([
            _course_name(client, session, course_id),
            _course_notifications(client, session, course_id),
            _course_homework(client, session, course_id),
            _course_files(client, session, course_id)
        ])
    except (TransportError, ExtractionError) as err:
        logging.warning(f"Course {course_id} failed: {err}")
        raise AggregationError(f"Could not aggregate course {course_id}: {err}", course_id, err) from err
    logging.info(f"Course {course_id} ({name}) aggregated.")
    return Course(course_id, name, notifications, homework, files)


@default_connector
async def aggregate_course(course_id: CourseId, session: SessionHandle, *, timeout: float = NETWORK_TIMEOUT,
                           connector: aiohttp.TCPConnector = None) -> Course:
    """
    Fetches the name, notifications, homework and files of a course concurrently and returns them as a Course.

    Notification contents and homework details are fetched in a second wave per list once the listings are in. If any
    fetch at any level fails, the whole course fails with AggregationError and nothing partial is returned.

    course_id:  ID of the course, see get_course_ids().
    session:    SessionHandle returned by login().
    timeout:    seconds allowed for each HTTP request.
    connector:  pass aiohttp.TCPConnector to share connector for connection keepaliving.
    """

    async with _client(connector, timeout) as client:
        return await _aggregate_course(client, session, course_id)


@default_connector
async def aggregate_courses(course_ids: Iterable[CourseId], session: SessionHandle, *,
                            timeout: float = NETWORK_TIMEOUT, connector: aiohttp.TCPConnector = None) -> list[Course]:
    """
    Aggregates several courses concurrently. Courses are returned in the order of course_ids. The first course to fail
    fails the whole call with its AggregationError; the other courses are cancelled.

    course_ids: IDs of the courses to aggregate.
    session:    SessionHandle returned by login().
    timeout:    seconds allowed for each HTTP request.
    connector:  pass aiohttp.TCPConnector to share connector for connection keepaliving.
    """

    course_ids = list(course_ids)
    async with _client(connector, timeout) as client:
        courses = await _wave(_aggregate_course(client, session, course_id) for course_id in course_ids)
    logging.info(f"{len(courses)} courses aggregated.")
    return courses


@default_connector
async def load_courses(session: SessionHandle, *, timeout: float = NETWORK_TIMEOUT,
                       connector: aiohttp.TCPConnector = None) -> list[Course]:
    """
    Discovers the user's courses and aggregates all of them.
    """

    course_ids = await get_course_ids(session, timeout=timeout, connector=connector)
    return await aggregate_courses(course_ids, session, timeout=timeout, connector=connector)


async def _probe_headers(url: str, cookie_string: str, timeout: float) -> bytes:
    """
    Sends a HEAD request with a literal Cookie header from a throwaway client and returns the raw response header
    lines.
    """

    headers = {'Cookie': cookie_string} if cookie_string else {}
    probe_timeout = aiohttp.ClientTimeout(sock_connect=timeout, sock_read=timeout)
    async with aiohttp.ClientSession(cookie_jar=aiohttp.DummyCookieJar(), timeout=probe_timeout) as client:
        async with client.head(url, headers=headers, allow_redirects=False) as response:
            return b'\r\n'.join(name + b': ' + value for name, value in response.raw_headers)


async def resolve_save_name(url: str, session: SessionHandle, *, encoding: str = HEADER_ENCODING,
                            timeout: float = NETWORK_TIMEOUT) -> str:
    """
    Returns the filename the portal suggests for an attachment, without downloading it.

    The probe runs outside the aggregation pipeline's client, so the session's cookies are exported once as a string
    and attached to the probe by hand.

    url:        attachment URL, e.g. Homework.attachment_url or FileEntry.url.
    session:    SessionHandle returned by login().
    encoding:   encoding of the filename in the Content-Disposition header.
    timeout:    seconds allowed for the probe.
    """

    try:
        header_block = await _probe_headers(url, session.cookie_string(url), timeout)
    except (aiohttp.ClientError, asyncio.TimeoutError) as err:
        raise ResolutionError(f"Header probe of {url} failed: {err!r}") from err
    return parse_save_name(header_block, encoding)


@default_connector
async def iter_attachment(url: str, session: SessionHandle, *, chunk_size: int = DOWNLOAD_CHUNK_SIZE,
                          timeout: float = NETWORK_TIMEOUT,
                          connector: aiohttp.TCPConnector = None) -> AsyncGenerator[bytes, None]:
    """
    Streams an attachment body under the session, chunk by chunk, without decoding. An async generator.
    """

    async with _client(connector, timeout) as client:
        try:
            async with client.get(url, cookies=dict(session.cookies)) as response:
                if response.status != 200:
                    raise FetchError(f"Response status not OK for {url}. Received {response.status}.",
                                     response.status)
                async for chunk in response.content.iter_chunked(chunk_size):
                    yield chunk
        except (aiohttp.ClientError, asyncio.TimeoutError) as err:
            raise FetchError(f"Download of {url} failed: {err!r}") from err


@default_connector
async def fetch_attachment(url: str, session: SessionHandle, *, timeout: float = NETWORK_TIMEOUT,
                           connector: aiohttp.TCPConnector = None) -> bytes:
    """
    Returns an attachment body as bytes, undecoded. Use iter_attachment() for large files.
    """

    async with _client(connector, timeout) as client:
        try:
            return await _request(client, session, url, binary=True)
        except TransportError as err:
            raise FetchError(f"Download of {url} failed: {err}", err.status) from err


@default_connector
async def download_attachment(url: str, session: SessionHandle, *, encoding: str = HEADER_ENCODING,
                              timeout: float = NETWORK_TIMEOUT,
                              connector: aiohttp.TCPConnector = None) -> tuple[str, bytes]:
    """
    Resolves an attachment's save name and fetches its body concurrently. Returns (save_name, body).
    """

    save_name, body = await _wave([
        resolve_save_name(url, session, encoding=encoding, timeout=timeout),
        fetch_attachment(url, session, timeout=timeout, connector=connector)
    ])
    logging.info(f"Downloaded {save_name} ({len(body)} bytes).")
    return save_name, body
