from __future__ import annotations
from inspect import cleandoc
from typing import Union
import asyncio
import cmd
import getpass
import json
import logging
import os
import thulearn

logging.basicConfig(level=logging.WARNING, format='%(asctime)s:%(levelname)s:%(name)s: %(message)s')


def print_courses(i_courses: list[thulearn.Course]) -> None:
    num_pad = len(str(len(i_courses)))
    space = ' ' * num_pad + ' ' * 2
    for course_no, course in enumerate(i_courses, 1):
        print(f"{str(course_no).rjust(num_pad)}. {course.name} ({course.id})")
        pending = sum(1 for homework in course.homework if not homework.submitted)
        print(f"{space}> Notifications: {len(course.notifications)}")
        print(f"{space}> Homework: {len(course.homework)} ({pending} not submitted)")
        print(f"{space}> Files: {sum(len(files) for files in course.files.values())} in {len(course.files)} categories")


def print_course(course: thulearn.Course) -> None:
    print(f"{course.name} ({course.id})")
    print("Notifications:")
    for notification in course.notifications:
        print(f"  [{notification.release_date}] {notification.title} - {notification.author}")
    print("Homework:")
    for homework in course.homework:
        x = "X" if homework.submitted else " "
        print(f"  [{x}] {homework.title} (due {homework.deadline})")
        if homework.has_attachment:
            print(f"      {homework.attachment_url}")
    print("Files:")
    for category, files in course.files.items():
        print(f"  {category}")
        for file in files:
            print(f"    [{file.release_date}] {file.title}")
            print(f"      {file.url}")


def parse_course_selection(args: str, i_courses: list[thulearn.Course]) -> Union[list[thulearn.Course], None]:
    """
    Resolves 'print' command arguments, list numbers or course IDs, to fetched courses. Returns None if any argument
    matches nothing.
    """

    selected = []
    for arg in args.split():
        if arg.isdigit() and 0 < int(arg) <= len(i_courses):
            selected.append(i_courses[int(arg) - 1])
            continue
        course = next((course for course in i_courses if course.id == arg), None)
        if course is None:
            return None
        selected.append(course)
    return selected


async def save_attachment(url: str, session: thulearn.SessionHandle, directory: str) -> str:
    """
    Resolves the attachment's save name, then streams its body into that file under directory. Returns the path. If
    the download fails midway, the partial file is removed.
    """

    save_name = await thulearn.resolve_save_name(url, session)
    path = os.path.join(directory, os.path.basename(save_name) or 'attachment')
    try:
        with open(path, 'wb') as f_file:
            async for chunk in thulearn.iter_attachment(url, session):
                f_file.write(chunk)
    except thulearn.FetchError:
        os.remove(path)
        raise
    logging.info(f"Saved {url} to {path}.")
    return path


class Prompt(cmd.Cmd):
    nohelp = "No help on '%s'."

    def __init__(self, loop: asyncio.AbstractEventLoop, base_url: str = thulearn.BASE_URL):
        super().__init__()
        self.loop = loop
        self.base_url = base_url
        self.session: Union[thulearn.SessionHandle, None] = None
        self.course_ids: list[str] = []
        self.courses: list[thulearn.Course] = []

    def _logged_in(self) -> bool:
        if self.session is None:
            print("Log in to use this command.")
            return False
        return True

    def do_login(self, args: str):
        """
        Description:
            Log in to the learn portal.
        Usage:
            login [user_id]
        """

        user_id = args.split()[0] if args else input("User ID: ")
        password = getpass.getpass()
        try:
            self.session = self.loop.run_until_complete(thulearn.login(user_id, password, base_url=self.base_url))
        except thulearn.AuthError as err:
            print(f"Login failed: {err}")
            return
        print("Success.")

    def do_courses(self, args: str):
        """
        Description:
            List the IDs of your courses.
        Usage:
            courses
        """

        if not self._logged_in():
            return
        try:
            self.course_ids = self.loop.run_until_complete(thulearn.get_course_ids(self.session))
        except thulearn.LearnError as err:
            print(f"{err}")
            return
        if not self.course_ids:
            print("No courses found. Check your user ID and password.")
        for course_id in self.course_ids:
            print(course_id)

    def do_fetch(self, args: str):
        """
        Description:
            Fetch notifications, homework and files of courses.
        Usage:
            fetch [all]
            fetch <course_id> ...
        """

        if not self._logged_in():
            return
        course_ids = args.split()
        try:
            if not course_ids or course_ids == ['all']:
                print('This could take a while. Working...')
                self.courses = self.loop.run_until_complete(thulearn.load_courses(self.session))
            else:
                self.courses = self.loop.run_until_complete(thulearn.aggregate_courses(course_ids, self.session))
        except thulearn.LearnError as err:
            print(f"Fetch failed: {err}")
            return
        print_courses(self.courses)

    def do_print(self, args: str):
        """
        Description:
            Display fetched courses, or the details of some of them.
        Usage:
            print
            print <number|course_id> ...
        """

        if not self.courses:
            print("No courses fetched. Enter 'help fetch' for command help.")
            return
        if not args:
            print_courses(self.courses)
            return
        selected = parse_course_selection(args, self.courses)
        if selected is None:
            print("Invalid course. Enter 'help print' for command help.")
            return
        for course in selected:
            print_course(course)

    def do_export(self, args: str):
        """
        Description:
            Write fetched courses to a json file.
        Usage:
            export <file>
        """

        if not args:
            print("Missing file name. Enter 'help export' for command help.")
            return
        try:
            with open(args.strip(), "w", encoding="utf-8") as f_file:
                json.dump([course.to_dict() for course in self.courses], f_file, ensure_ascii=False, indent=2)
        except OSError as err:
            print(f"Export failed: {err}")
            return
        print(f"{len(self.courses)} courses exported.")

    def do_download(self, args: str):
        """
        Description:
            Download an attachment or course file, saved under the name the portal suggests.
        Usage:
            download <url> [directory]
        """

        if not self._logged_in():
            return
        args_list = args.split()
        if not 0 < len(args_list) < 3:
            print("Expected one or two arguments. Enter 'help download' for command help.")
            return
        directory = args_list[1] if len(args_list) == 2 else '.'
        try:
            path = self.loop.run_until_complete(save_attachment(args_list[0], self.session, directory))
        except (thulearn.LearnError, OSError) as err:
            print(f"Download failed: {err}")
            return
        print(f"Saved to {path}.")

    def do_verbose(self, args: str):
        """
        Description:
            Toggle progress logging.
        Usage:
            verbose
        """

        logger = logging.getLogger()
        logger.setLevel(logging.WARNING if logger.level < logging.WARNING else logging.INFO)
        print(f"Logging level: {logging.getLevelName(logger.level)}")

    def do_exit(self, args: str):
        """
        Description:
            Terminate this script.
        Usage:
            exit
        """

        print('Exiting.')
        return True

    def default(self, line: str):
        print(f"Command not found: '{line}'. Enter 'help' to list commands.")

    def emptyline(self):
        pass

    def do_help(self, arg: str):
        """
        Description:
            List available commands or provide command help.
        Usage:
            help [command]
        """

        if arg:
            try:
                # cmd module's do_help() does not de-indent docstrings.
                doc = cleandoc(getattr(self, 'do_' + arg).__doc__)
            except AttributeError:
                self.stdout.write("%s\n" % str(self.nohelp % (arg,)))
                return
            self.stdout.write("%s\n" % str(doc))
            return
        names = sorted(name[3:] for name in self.get_names() if name.startswith('do_'))
        self.stdout.write("%s\n" % str(self.doc_leader))
        self.print_topics(self.doc_header, names, 15, 80)


if __name__ == '__main__':
    loop = asyncio.new_event_loop()
    prompt = Prompt(loop)
    prompt.prompt = '> '
    prompt.ruler = '—'
    prompt.intro = cleandoc("""
         thulearn: notifications, homework and files from learn.tsinghua.edu.cn

         To start:  login
                    fetch
         Enter 'help' or '?' to list commands.
    """)
    try:
        prompt.cmdloop()
    except KeyboardInterrupt:
        print()
        prompt.do_exit("")
    finally:
        loop.close()
