import argparse
import json
import os
import sys
import logging
import time
from datetime import datetime
from typing import Callable, Optional

from dotenv import load_dotenv

from whiplash.application.ranking import SORT_DIRECTIONS, SORT_KEYS, sort_artist_rows
from whiplash.application.review import MODE_DECK, ReviewSession
from whiplash.application.scan import LibraryScanner
from whiplash.crosscutting.config import ConfigError, get_secret_manager, setup_config
from whiplash.crosscutting.logging import setup_logging
from whiplash.crosscutting.metrics import MetricsCollector
from whiplash.crosscutting.pdf import export_insights_pdf, export_review_pdf
from whiplash.crosscutting.reporting import (
    PROGRESS_FILENAME, export_progress, load_snapshot, render_insights,
    render_review_status, restore_session, save_insights_report, save_snapshot
)
from whiplash.domain.errors import AuthenticationMissing, MalformedImportFile, ProviderFetchFailure
from whiplash.domain.ports import CatalogProvider, CredentialProvider
from whiplash.infrastructure.credentials import default_credentials
from whiplash.infrastructure.providers.spotify import SpotifyCatalogProvider


EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_AUTH = 2


class CLI:
    """Command Line Interface for Whiplash."""

    def __init__(self,
                 credentials: Optional[CredentialProvider] = None,
                 catalog: Optional[CatalogProvider] = None,
                 input_fn: Callable[[str], str] = input):
        """Initialize CLI.

        Args:
            credentials: Token source; environment then tokens.json by default
            catalog: Catalog provider; Spotify by default
            input_fn: Prompt function used by the review deck
        """
        self.parser = self._create_parser()
        self._credentials = credentials
        self._catalog = catalog
        self._input = input_fn
        self._start_time = None

    def _create_parser(self) -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(
            prog='whiplash',
            description='Scan a Spotify playlist library and review its artists'
        )
        parser.add_argument(
            '--log-level',
            choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
            default='WARNING',
            help='Set logging level'
        )
        parser.add_argument(
            '--log-file',
            default=None,
            help='Also write structured logs to this file'
        )
        parser.add_argument(
            '--config-dir',
            default=None,
            help='Directory holding tokens.json and .env (default: WHIPLASH_CONFIG_DIR or ~/.whiplash)'
        )

        subparsers = parser.add_subparsers(dest='command', help='Available commands')

        scan_parser = subparsers.add_parser('scan', help='Scan all playlists and build a snapshot')
        scan_parser.add_argument(
            '--output',
            default='whiplash-snapshot.json',
            help='Path to save the snapshot (default: whiplash-snapshot.json)'
        )
        scan_parser.add_argument(
            '--progress',
            default=None,
            help='Also start or refresh a progress file at this path'
        )
        scan_parser.add_argument(
            '--workers',
            type=int,
            default=None,
            help='Playlists fetched in parallel (default from WHIPLASH_FETCH_WORKERS or 1)'
        )
        scan_parser.add_argument(
            '--metrics',
            default=None,
            help='Save scan metrics JSON to this path'
        )
        scan_parser.add_argument(
            '--summary',
            action='store_true',
            help='Print the scan metrics summary'
        )

        insights_parser = subparsers.add_parser('insights', help='Print the insights pages')
        insights_parser.add_argument(
            '--input',
            required=True,
            help='Snapshot or progress file'
        )
        insights_parser.add_argument(
            '--pdf',
            default=None,
            help='Also export the insights pages to this PDF file'
        )
        insights_parser.add_argument(
            '--json',
            default=None,
            help='Also save the insights pages as JSON to this file'
        )

        table_parser = subparsers.add_parser('table', help='Print the full artist table')
        table_parser.add_argument(
            '--input',
            required=True,
            help='Snapshot or progress file'
        )
        table_parser.add_argument(
            '--sort',
            choices=list(SORT_KEYS),
            default='songCount',
            help='Column to sort by (default: songCount)'
        )
        table_parser.add_argument(
            '--direction',
            choices=list(SORT_DIRECTIONS),
            default='desc',
            help='Sort direction (default: desc)'
        )

        review_parser = subparsers.add_parser('review', help='Swipe through artists: seen or not seen')
        review_parser.add_argument(
            '--progress',
            default=PROGRESS_FILENAME,
            help=f'Progress file to resume and update (default: {PROGRESS_FILENAME})'
        )
        review_parser.add_argument(
            '--input',
            default=None,
            help='Snapshot to start from when the progress file does not exist yet'
        )
        review_parser.add_argument(
            '--reset',
            action='store_true',
            help='Clear earlier decisions before reviewing'
        )
        review_parser.add_argument(
            '--pdf',
            default=None,
            help='Export the seen / not seen lists to this PDF file when done'
        )

        config_parser = subparsers.add_parser('config', help='Show or update the stored configuration')
        config_parser.add_argument(
            '--set',
            action='append',
            default=[],
            metavar='KEY=VALUE',
            help='Store a variable in the config-dir .env file (repeatable)'
        )

        return parser

    def _cleanup_resources(self) -> None:
        logger = logging.getLogger(__name__)
        if self._start_time:
            duration = time.time() - self._start_time
            logger.info(f"CLI execution time: {duration:.2f}s")

    def _fetch_workers(self, args: argparse.Namespace) -> int:
        if args.workers is not None:
            return max(1, args.workers)
        return max(1, get_secret_manager().get_int('WHIPLASH_FETCH_WORKERS', 1))

    def _create_scan_id(self) -> str:
        """Create unique scan identifier."""
        return f"whiplash_{datetime.now().strftime('%Y%m%d_%H%M%S')}"

    def _scan(self, args: argparse.Namespace) -> int:
        logger = logging.getLogger(__name__)

        session = None
        if args.progress and os.path.exists(args.progress):
            # An unreadable progress file aborts the scan and stays untouched
            session = ReviewSession()
            restore_session(session, args.progress)

        scan_id = self._create_scan_id()
        metrics = MetricsCollector(scan_id)
        scanner = LibraryScanner(
            credentials=self._credentials or default_credentials(),
            catalog=self._catalog or SpotifyCatalogProvider(metrics=metrics),
            fetch_workers=self._fetch_workers(args),
            metrics=metrics,
        )

        try:
            result = scanner.scan(scan_id=scan_id)
        except AuthenticationMissing:
            print("Not authenticated: set SPOTIFY_ACCESS_TOKEN or log in through the HTTP server.",
                  file=sys.stderr)
            return EXIT_AUTH
        except ProviderFetchFailure as e:
            print(f"Scan failed: {e}", file=sys.stderr)
            return EXIT_FAILURE

        save_snapshot(result.snapshot, args.output)
        logger.info(f"Snapshot saved to: {args.output}")

        if args.progress:
            if session is None:
                session = ReviewSession()
            session.replace_snapshot(result.snapshot)
            export_progress(session, args.progress)
            logger.info(f"Progress saved to: {args.progress}")

        if args.metrics:
            result.metrics.save_to_file(args.metrics)
        if args.summary:
            result.metrics.print_summary()

        print(render_insights(result.snapshot))
        print(f"\nSnapshot saved to {args.output}")
        return EXIT_OK

    def _insights(self, args: argparse.Namespace) -> int:
        snapshot = load_snapshot(args.input)
        print(render_insights(snapshot))
        if args.pdf:
            export_insights_pdf(snapshot, args.pdf)
            print(f"\nPDF saved to {args.pdf}")
        if args.json:
            save_insights_report(snapshot, args.json)
            print(f"\nReport saved to {args.json}")
        return EXIT_OK

    def _table(self, args: argparse.Namespace) -> int:
        snapshot = load_snapshot(args.input)
        rows = sort_artist_rows(snapshot.artist_table, args.sort, args.direction)

        print(f"{'Artist':<40} {'Songs':>6} {'Songs %':>8} {'Playlists':>10} {'Playlists %':>12}")
        print("-" * 80)
        for row in rows:
            print(f"{row.artist_name[:40]:<40} {row.song_count:>6} {row.song_percent:>7}% "
                  f"{row.playlist_count:>10} {row.playlist_percent:>11}%")
        return EXIT_OK

    def _review(self, args: argparse.Namespace) -> int:
        session = ReviewSession(mode=MODE_DECK)

        if os.path.exists(args.progress):
            restore_session(session, args.progress)
        elif args.input:
            session.replace_snapshot(load_snapshot(args.input))
        else:
            print(f"No progress file at {args.progress}; pass --input with a snapshot.", file=sys.stderr)
            return EXIT_FAILURE

        if args.reset:
            session.reset()
        session.mode = MODE_DECK

        print("y = seen, n = not seen, u = undo, q = quit")
        while not session.is_done():
            artist = session.current()
            stats = session.stats()
            answer = self._input(
                f"[{session.deck_index + 1}/{stats.total}] {artist.artist_name} ({artist.track_count} songs)? "
            ).strip().lower()

            if answer in ('y', 'yes'):
                session.mark_current(True)
            elif answer in ('n', 'no'):
                session.mark_current(False)
            elif answer == 'u':
                session.undo()
            elif answer == 'q':
                break
            else:
                continue
            export_progress(session, args.progress)

        export_progress(session, args.progress)
        print(render_review_status(session))
        if args.pdf:
            export_review_pdf(session, args.pdf)
            print(f"\nPDF saved to {args.pdf}")
        return EXIT_OK

    def _config(self, args: argparse.Namespace) -> int:
        manager = get_secret_manager()

        if args.set:
            env_vars = manager.load_env_vars()
            for pair in args.set:
                key, sep, value = pair.partition('=')
                if not sep or not key.strip():
                    print(f"Expected KEY=VALUE, got {pair!r}", file=sys.stderr)
                    return EXIT_FAILURE
                env_vars[key.strip()] = value.strip()
            manager.save_env_vars(env_vars)
            print(f"Saved {len(args.set)} variable(s) to {manager.env_file}")

        print(json.dumps(manager.get_config_summary(), indent=2))
        return EXIT_OK

    def run(self, argv=None) -> int:
        """Run the CLI and return the exit code."""
        self._start_time = time.time()

        args = self.parser.parse_args(argv)
        if not args.command:
            self.parser.print_help()
            return EXIT_FAILURE

        setup_logging(args.log_level, args.log_file)
        logger = logging.getLogger(__name__)

        handlers = {
            'scan': self._scan,
            'insights': self._insights,
            'table': self._table,
            'review': self._review,
            'config': self._config,
        }

        try:
            if args.config_dir:
                setup_config(args.config_dir)
            return handlers[args.command](args)
        except KeyboardInterrupt:
            logger.warning("Operation cancelled by user")
            return 130
        except MalformedImportFile as e:
            print(f"Invalid file: {e}", file=sys.stderr)
            return EXIT_FAILURE
        except (ConfigError, OSError) as e:
            logger.error(f"CLI error: {e}")
            print(f"Error: {e}", file=sys.stderr)
            return EXIT_FAILURE
        finally:
            self._cleanup_resources()


def main():
    """Main entry point."""
    load_dotenv()
    cli = CLI()
    sys.exit(cli.run())


if __name__ == '__main__':
    main()
