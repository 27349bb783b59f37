import argparse
import json
import logging
import math
import random
import signal
import sys
import time
from typing import List, Optional
from dotenv import load_dotenv

from mshuffle.application.engine import ListeningSessionEngine
from mshuffle.crosscutting.config import ConfigError, SecretManager, load_shuffle_settings
from mshuffle.crosscutting.logging import setup_logging
from mshuffle.domain.entities import Authorization
from mshuffle.domain.errors import MusicProviderError, SessionError
from mshuffle.infrastructure.providers.local import LocalMusicProvider

ACTIONS = ('next', 'skip', 'enjoy', 'dislike')


class CLI:
    """Command Line Interface for mshuffle."""

    def __init__(self):
        """Initialize CLI."""
        self.parser = self._create_parser()
        self._setup_signal_handlers()
        self._start_time = None

    def _create_parser(self) -> argparse.ArgumentParser:
        """Create argument parser."""
        parser = argparse.ArgumentParser(
            prog='mshuffle',
            description='Smart shuffle that learns from what you enjoy'
        )
        parser.add_argument(
            '--log-level',
            choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
            default=None,
            help='Set logging level (default: MSHUFFLE_LOG_LEVEL or INFO)'
        )

        subparsers = parser.add_subparsers(dest='command', help='Available commands')

        # Serve command
        serve_parser = subparsers.add_parser('serve', help='Run the HTTP server')
        serve_parser.add_argument(
            '--host',
            default='localhost',
            help='Interface to bind (default: localhost)'
        )
        serve_parser.add_argument(
            '--port',
            type=int,
            default=3000,
            help='Port to listen on (default: 3000)'
        )
        serve_parser.add_argument(
            '--debug',
            action='store_true',
            help='Run Flask in debug mode'
        )

        # Simulate command
        simulate_parser = subparsers.add_parser(
            'simulate', help='Drive a listening session over a local library file')
        simulate_parser.add_argument(
            '--library',
            required=True,
            help='Path to a JSON library file'
        )
        simulate_parser.add_argument(
            '--playlist',
            required=True,
            help='Playlist ID inside the library'
        )
        simulate_parser.add_argument(
            '--owner',
            default='',
            help='Owner of the playlist (optional)'
        )
        simulate_parser.add_argument(
            '--actions',
            nargs='+',
            choices=ACTIONS,
            default=None,
            help='Sequence of listener actions (default: --steps times next)'
        )
        simulate_parser.add_argument(
            '--steps',
            type=int,
            default=10,
            help='Number of next actions when --actions is not given (default: 10)'
        )
        simulate_parser.add_argument(
            '--seed',
            type=int,
            default=None,
            help='Random seed for reproducible selections'
        )
        simulate_parser.add_argument(
            '--history-capacity',
            type=float,
            default=None,
            help='History size: fraction of the playlist below 1, track count otherwise'
        )

        # Config command
        config_parser = subparsers.add_parser('config', help='Show or edit the Spotify client configuration')
        config_parser.add_argument(
            '--config-dir',
            default=None,
            help='Configuration directory (default: ~/.mshuffle)'
        )
        config_parser.add_argument(
            '--set',
            nargs='+',
            metavar='KEY=VALUE',
            default=None,
            help='Store SPOTIFY_* values in the configuration .env file'
        )
        config_parser.add_argument(
            '--clear',
            action='store_true',
            help='Delete the configuration .env file'
        )
        config_parser.add_argument(
            '--check',
            action='store_true',
            help='Fail unless client ID, secret and redirect URI are all configured'
        )

        return parser

    def _setup_signal_handlers(self) -> None:
        """Setup signal handlers for graceful shutdown."""
        def signal_handler(signum, frame):
            logger = logging.getLogger(__name__)
            logger.warning(f"Received signal {signum}, shutting down gracefully...")
            self._cleanup_resources()
            sys.exit(130)  # Standard exit code for signal termination

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

    def _cleanup_resources(self) -> None:
        """Clean up resources on exit."""
        logger = logging.getLogger(__name__)
        if self._start_time:
            duration = time.time() - self._start_time
            logger.info(f"CLI execution time: {duration:.2f}s")

    def _validate_arguments(self, args: argparse.Namespace) -> None:
        """Validate CLI arguments."""
        if getattr(args, 'steps', 0) < 0:
            raise ValueError("--steps must not be negative")
        capacity = getattr(args, 'history_capacity', None)
        if capacity is not None and (not math.isfinite(capacity) or capacity < 0):
            raise ValueError("--history-capacity must be a finite, non-negative number")

    def _serve(self, args: argparse.Namespace) -> None:
        """Run the HTTP server."""
        from mshuffle.interfaces.http import HTTPServer

        server = HTTPServer(host=args.host, port=args.port, debug=args.debug)
        server.run()

    def _config(self, args: argparse.Namespace) -> None:
        """Show, update or clear the stored Spotify client configuration."""
        manager = SecretManager(args.config_dir)

        if args.clear:
            manager.clear_env_vars()
            print(f"Removed {manager.env_file}")

        if args.set:
            env_vars = manager.load_env_vars() if manager.env_file.exists() else {}
            for pair in args.set:
                if '=' not in pair:
                    raise ValueError(f"Expected KEY=VALUE, got {pair!r}")
                key, value = pair.split('=', 1)
                env_vars[key.strip()] = value.strip()
            manager.save_env_vars(env_vars)
            print(f"Saved {len(args.set)} value(s) to {manager.env_file}")

        if args.check:
            manager.get_spotify_client_config()

        print(json.dumps(manager.get_config_summary(), indent=2))

    def _simulate(self, args: argparse.Namespace, settings) -> None:
        """Replay listener actions against a local playlist and print the outcome."""
        provider = LocalMusicProvider.from_file(args.library)
        seed = args.seed if args.seed is not None else settings.random_seed
        engine = ListeningSessionEngine(provider, rng=random.Random(seed), settings=settings)

        auth = Authorization(access_token='local-simulation')
        playlist = provider.get_playlist(auth, args.owner, args.playlist)

        options = {}
        if args.history_capacity is not None:
            options['History'] = args.history_capacity
        engine.create_session(auth, playlist, feature_options=options)

        actions: List[str] = args.actions or ['next'] * args.steps
        print(f"Simulating {len(actions)} actions on '{playlist.name}' ({playlist.track_count} tracks)")
        print("-" * 50)

        for step, action in enumerate(actions, start=1):
            if action in ('next', 'skip'):
                track = getattr(engine, action)(auth)
                print(f"{step:>3} {action:<7} -> {track.label if track else 'no track available'}")
            else:
                getattr(engine, action)(auth)
                current = engine.get_session(auth).current_track
                print(f"{step:>3} {action:<7} {current.label}")

        print("-" * 50)
        for entry in engine.get_distribution(auth):
            print(f"{entry.value:8.4f}  {entry.label}")
        print("-" * 50)
        print(json.dumps(engine.metrics.to_dict(), indent=2))

    def run(self, argv: Optional[List[str]] = None) -> None:
        """Run the CLI."""
        self._start_time = time.time()
        logger = logging.getLogger(__name__)

        try:
            args = self.parser.parse_args(argv)

            if not args.command:
                self.parser.print_help()
                sys.exit(1)

            settings = load_shuffle_settings()
            setup_logging(args.log_level or settings.log_level, settings.log_file)

            self._validate_arguments(args)

            if args.command == 'serve':
                self._serve(args)
            elif args.command == 'simulate':
                self._simulate(args, settings)
            elif args.command == 'config':
                self._config(args)
            else:
                self.parser.print_help()
                sys.exit(1)

        except KeyboardInterrupt:
            logger.warning("Operation cancelled by user")
            sys.exit(130)
        except (ConfigError, ValueError, MusicProviderError, SessionError) as e:
            logger.error(f"CLI error: {e}")
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)
        finally:
            self._cleanup_resources()


def main():
    """Main entry point."""
    load_dotenv()
    cli = CLI()
    cli.run()


if __name__ == '__main__':
    main()
