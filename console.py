"""Command line front end for a Storytime server.

    storytime login you@example.com
    storytime new "The Clockwork Garden"
    storytime continue --book <id> "The gardener finds a key"
    storytime show <id>
"""

import argparse
import getpass
import logging
import sys

from api_client import ApiError, StorytimeClient, TransportError
from book_session import BookSession
from config import ClientConfig
from errors import InvalidArgument
from session import CredentialStore, RestoreOutcome, SessionManager


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog='storytime', description='Write books with an AI co-author.')
    ap.add_argument('--server', default=ClientConfig.API_URL, help='API base URL (default: %(default)s)')
    ap.add_argument('--credentials', default=ClientConfig.CREDENTIALS_PATH, help='Where the session token is kept.')
    ap.add_argument('-v', '--verbose', action='store_true', help='Log HTTP and session activity.')
    sub = ap.add_subparsers(dest='command', required=True)

    for name in ('register', 'login'):
        p = sub.add_parser(name, help=f'{name.capitalize()} with email and password.')
        p.add_argument('email')
        p.add_argument('--password', help='Prompted for when omitted.')

    sub.add_parser('logout', help='Forget the stored session.')
    sub.add_parser('whoami', help='Verify the stored session and show the user.')
    sub.add_parser('books', help='List your books, newest first.')

    p = sub.add_parser('new', help='Create a book.')
    p.add_argument('title')

    p = sub.add_parser('show', help='Print a book\'s story.')
    p.add_argument('book_id')

    p = sub.add_parser('continue', help='Generate the next chapter.')
    p.add_argument('prompt')
    p.add_argument('--book', dest='book_id', help='Save the chapter to this book.')

    p = sub.add_parser('add-chapter', help='Save chapter text to a book (e.g. after a failed save).')
    p.add_argument('book_id')
    p.add_argument('content')
    p.add_argument('--idx', type=int, help='Chapter index (default: after the last chapter).')
    return ap


def _require_session(sessions) -> bool:
    outcome = sessions.restore()
    if outcome is RestoreOutcome.RESTORED:
        return True
    if outcome is RestoreOutcome.UNREACHABLE:
        print('Could not reach the server to verify your session; try again later.', file=sys.stderr)
    else:
        print('Not logged in. Run: storytime login <email>', file=sys.stderr)
    return False


def _run(args, sessions) -> int:
    if args.command in ('register', 'login'):
        password = args.password or getpass.getpass('Password: ')
        if args.command == 'register':
            sessions.register(args.email, password)
            print('Registration successful. Run: storytime login', args.email)
        else:
            session = sessions.login(args.email, password)
            print('Logged in as', session.principal.email)
        return 0

    if args.command == 'logout':
        sessions.restore()
        sessions.logout()
        print('Logged out.')
        return 0

    if not _require_session(sessions):
        return 1
    books = BookSession(sessions)

    if args.command == 'whoami':
        print(sessions.session.principal.email)
    elif args.command == 'books':
        for book in books.list_books():
            print(f"{book['id']}  {book['created_at']}  {book['title']}")
    elif args.command == 'new':
        book = books.create_book(args.title)
        print(book['id'])
    elif args.command == 'show':
        story = books.select_book(args.book_id)
        print(books.title)
        print()
        print(story)
    elif args.command == 'continue':
        if args.book_id:
            books.select_book(args.book_id)
        result = books.continue_story(args.prompt)
        print(result.story)
        if args.book_id and not result.persisted:
            print(f'\nWarning: the chapter was not saved ({(result.error or {}).get("error", "unknown error")}).',
                  file=sys.stderr)
            print(f'Save it with: storytime add-chapter {args.book_id} <text> --idx {books.pending.idx}', file=sys.stderr)
            return 2
    elif args.command == 'add-chapter':
        chapter = sessions.call(sessions.api.add_chapter, args.book_id, args.content, args.idx)
        print(f"Saved chapter {chapter['idx']}")
    return 0


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING,
                        format='%(levelname)s %(name)s: %(message)s')
    api = StorytimeClient(args.server, timeout=ClientConfig.HTTP_TIMEOUT)
    sessions = SessionManager(api, CredentialStore(args.credentials))
    try:
        return _run(args, sessions)
    except InvalidArgument as e:
        print(f'Error: {e.message}', file=sys.stderr)
    except ApiError as e:
        print(f'Error: {e.message}', file=sys.stderr)
    except TransportError as e:
        print(f'Error: {e}', file=sys.stderr)
    return 1


if __name__ == '__main__':
    sys.exit(main())
