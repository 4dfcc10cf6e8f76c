"""CLI entry point for labbcat."""

from __future__ import annotations

import argparse
import getpass
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any

import pandas as pd
import questionary
from loguru import logger

from labbcat.client import LabbcatClient
from labbcat.config import (
    LabbcatConfig,
    get_config_path,
    is_interactive_disabled,
    require_interactive,
)
from labbcat.exceptions import LabbcatError
from labbcat.load_tester import LoadTester, LoadTestOptions
from labbcat.pattern import PatternBuilder
from labbcat.search import matches_dataframe

if TYPE_CHECKING:
    from collections.abc import Callable

    from labbcat.models import TaskStatus, Upload, UploadParameter


def configure_logging(*, verbose: bool) -> None:
    """Send log records to stderr; TRACE in verbose mode, INFO otherwise."""
    logger.remove()
    logger.add(sys.stderr, level="TRACE" if verbose else "INFO", format="{message}")


def parse_pattern(terms: list[str]) -> PatternBuilder:
    """Build a pattern from ``layer=regex`` terms, one column per term.

    Terms joined by ``+`` (``orthography=the+pos=DT``) constrain the same
    column.
    """
    builder = PatternBuilder()
    for term in terms:
        builder.add_column()
        for condition in term.split("+"):
            layer, sep, regex = condition.partition("=")
            if not sep or not layer:
                raise argparse.ArgumentTypeError(
                    f"Pattern term {condition!r} is not of the form layer=regex"
                )
            builder.add_matches(layer.strip(), regex)
    return builder


def parse_assignments(values: list[str] | None) -> dict[str, str]:
    """Turn ``name=value`` arguments into a dict."""
    result: dict[str, str] = {}
    for item in values or []:
        name, sep, value = item.partition("=")
        if not sep:
            raise argparse.ArgumentTypeError(f"Expected name=value, got {item!r}")
        result[name] = value
    return result


def _log_status(status: TaskStatus) -> None:
    state = "running" if status.running else "finished"
    logger.info(
        f"{status.thread_id}\t{status.thread_name}\t{state}\t"
        f"{status.percent_complete}%\t{status.status}"
    )
    if status.result_url:
        logger.info(f"\tresult: {status.result_url}")


class CliApp:
    """Command-line interface for labbcat."""

    def __init__(self, client_factory: Callable[..., LabbcatClient] | None = None) -> None:
        """Initialize parser and command table."""
        self._client_factory = client_factory or LabbcatClient
        self._parser = self._build_parser()
        self._commands: dict[str, Callable[[argparse.Namespace], None]] = {
            "setup": self._run_setup,
            "info": self._run_info,
            "tasks": self._run_tasks,
            "task": self._run_task,
            "search": self._run_search,
            "upload": self._run_upload,
            "fragments": self._run_fragments,
            "load-test": self._run_load_test,
        }

    def _build_parser(self) -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(
            description="LaBB-CAT corpus server client.",
        )
        parser.add_argument(
            "--verbose",
            "-v",
            action="store_true",
            help="Log every request and response.",
        )
        parser.add_argument(
            "--config",
            default=None,
            help=(
                "Path to YAML config (default: ~/.config/labbcat/config.yaml "
                "or LABBCAT_CONFIG)."
            ),
        )
        subparsers = parser.add_subparsers(dest="command", required=True)

        subparsers.add_parser("setup", help="Interactively configure the server connection.")
        subparsers.add_parser("info", help="Show server id, version and current user.")
        subparsers.add_parser("tasks", help="List server tasks.")
        self._add_task_parser(subparsers)
        self._add_search_parser(subparsers)
        self._add_upload_parser(subparsers)
        self._add_fragments_parser(subparsers)
        self._add_load_test_parser(subparsers)

        return parser

    def _add_task_parser(
        self,
        subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
    ) -> None:
        """Add the ``task`` command parser."""
        parser = subparsers.add_parser("task", help="Inspect or control one task.")
        parser.add_argument(
            "action",
            choices=["status", "wait", "cancel", "release"],
        )
        parser.add_argument("task_id", help="Numeric task id.")
        parser.add_argument(
            "--max-seconds",
            type=float,
            default=0,
            help="For 'wait': give up after this many seconds (default: no limit).",
        )
        parser.add_argument(
            "--log",
            action="store_true",
            help="For 'status': include the task's log.",
        )

    def _add_search_parser(
        self,
        subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
    ) -> None:
        """Add the ``search`` command parser."""
        parser = subparsers.add_parser("search", help="Search and export matches to CSV.")
        parser.add_argument(
            "pattern",
            nargs="+",
            help="One 'layer=regex' term per column; join terms in a column with '+'.",
        )
        parser.add_argument("--participant", "-p", action="append", default=None)
        parser.add_argument("--transcript-type", action="append", default=None)
        parser.add_argument(
            "--all-participants",
            action="store_true",
            help="Include matches from non-main participants.",
        )
        parser.add_argument("--aligned", action="store_true")
        parser.add_argument("--matches-per-transcript", type=int, default=None)
        parser.add_argument("--overlap-threshold", type=int, default=None)
        parser.add_argument("--words-context", type=int, default=0)
        parser.add_argument("--max-matches", type=int, default=None)
        parser.add_argument(
            "--output",
            "-o",
            default=None,
            help="CSV file to write (default: print to stdout).",
        )

    def _add_upload_parser(
        self,
        subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
    ) -> None:
        """Add the ``upload`` command parser."""
        parser = subparsers.add_parser(
            "upload",
            help="Upload a transcript (and media) and resolve its parameters.",
        )
        parser.add_argument("transcript", help="Transcript file.")
        parser.add_argument("--media", "-m", action="append", default=None)
        parser.add_argument("--track-suffix", default="")
        parser.add_argument(
            "--merge",
            action="store_true",
            help="Update an existing transcript instead of adding a new one.",
        )
        parser.add_argument(
            "--param",
            action="append",
            default=None,
            help="Upload parameter as name=value (repeatable).",
        )
        parser.add_argument(
            "--wait",
            action="store_true",
            help="Wait for server-side processing to finish.",
        )

    def _add_fragments_parser(
        self,
        subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
    ) -> None:
        """Add the ``fragments`` command parser."""
        parser = subparsers.add_parser(
            "fragments",
            help="Download WAV fragments for a matches CSV produced by 'search'.",
        )
        parser.add_argument("matches_csv")
        parser.add_argument("--output-dir", "-o", required=True)
        parser.add_argument("--sample-rate", type=int, default=None)

    def _add_load_test_parser(
        self,
        subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
    ) -> None:
        """Add the ``load-test`` command parser."""
        defaults = LoadTestOptions()
        parser = subparsers.add_parser("load-test", help="Load-test the server.")
        parser.add_argument("--clients", type=int, default=defaults.clients)
        parser.add_argument("--repetitions", type=int, default=defaults.repetitions)
        parser.add_argument("--client-delay", type=float, default=defaults.client_delay)
        parser.add_argument("--search-for", default=defaults.search_for)
        parser.add_argument("--other-layer", default=defaults.other_layer)
        parser.add_argument("--max-matches", type=int, default=defaults.max_matches)
        parser.add_argument("--no-match-annotations", action="store_true")
        parser.add_argument("--no-fragments", action="store_true")
        parser.add_argument("--no-sound-fragments", action="store_true")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _load_config(self, args: argparse.Namespace) -> LabbcatConfig:
        config_path = Path(args.config) if args.config else None
        return LabbcatConfig.load(config_path=config_path)

    def _require_url(self, cfg: LabbcatConfig) -> None:
        """Abort with a friendly message when no server is configured."""
        if cfg.url:
            return
        sys.exit(
            "Error: no LaBB-CAT server configured.\n"
            "Run setup to save one:\n  labbcat setup\n"
            "Or set LABBCAT_URL (and LABBCAT_USERNAME/LABBCAT_PASSWORD).\n"
            f"Config file: {get_config_path()}"
        )

    def _open_client(self, args: argparse.Namespace) -> LabbcatClient:
        cfg = self._load_config(args)
        self._require_url(cfg)
        return self._client_factory(cfg, verbose=args.verbose)

    @staticmethod
    def _ask_parameter(parameter: UploadParameter) -> Any:  # noqa: ANN401
        """Prompt for one upload parameter value."""
        label = parameter.label or parameter.name
        if parameter.hint:
            label += f" ({parameter.hint})"
        if parameter.possible_values:
            choices = [str(v) for v in parameter.possible_values]
            current = str(parameter.value)
            answer = questionary.select(
                f"{label}:",
                choices=choices,
                default=current if current in choices else None,
                use_shortcuts=False,
                use_indicator=True,
            ).ask()
        elif parameter.type == "boolean":
            answer = questionary.confirm(f"{label}?", default=bool(parameter.value)).ask()
        else:
            answer = questionary.text(
                f"{label}:",
                default="" if parameter.value is None else str(parameter.value),
            ).ask()
        if answer is None:
            sys.exit("Cancelled.")
        return answer

    def _fill_upload(self, upload: Upload, given: dict[str, str]) -> Upload:
        """Apply *given* values, then prompt for required ones still missing."""
        upload = upload.with_values(given)
        missing = upload.missing_required()
        if not missing:
            return upload
        require_interactive(
            f"Pass the missing upload parameters with --param: {', '.join(missing)}"
        )
        answers = {
            name: self._ask_parameter(parameter)
            for name in missing
            if (parameter := upload.parameter(name)) is not None
        }
        return upload.with_values(answers)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def _run_setup(self, args: argparse.Namespace) -> None:
        """Interactively ask for the server settings and save them."""
        require_interactive(
            "The 'setup' command is fully interactive. "
            "Configure via env vars (LABBCAT_URL, LABBCAT_USERNAME, ...) "
            "or edit the config file directly."
        )
        config_path = get_config_path(Path(args.config) if args.config else None)
        existing = LabbcatConfig.from_file(config_path)

        url_default = existing.url or ""
        url = input(f"LaBB-CAT URL [{url_default}]: ").strip() or url_default
        username_default = existing.username or ""
        prompt = "Username"
        if username_default:
            prompt += f" [{username_default}]"
        username = input(prompt + ": ").strip() or username_default
        password = getpass.getpass("Password: ")
        if not password and existing.password:
            password = existing.password
            logger.info("Password unchanged (kept the existing one).")
        language_default = existing.language or ""
        language = input(f"Language [{language_default}]: ").strip() or language_default

        cfg = LabbcatConfig(
            url=url,
            username=username or None,
            password=password or None,
            language=language or None,
        )
        keep_password = bool(password) and questionary.confirm(
            "Store the password in the config file (plain text)?", default=False
        ).ask()
        saved_path = cfg.save_to_file(config_path, include_password=bool(keep_password))
        logger.info(f"Done! Configuration saved to {saved_path}")

    def _run_info(self, args: argparse.Namespace) -> None:
        with self._open_client(args) as client:
            version = client.connect()
            logger.info(f"Server: {client.store.get_id()}")
            logger.info(f"Version: {version}")
            user = client.store.get_user_info()
            if user is not None:
                logger.info(f"User: {user.user} ({', '.join(user.roles)})")

    def _run_tasks(self, args: argparse.Namespace) -> None:
        with self._open_client(args) as client:
            tasks = client.tasks.list_tasks()
            if not tasks:
                logger.info("No tasks.")
            for status in tasks.values():
                _log_status(status)

    def _run_task(self, args: argparse.Namespace) -> None:
        with self._open_client(args) as client:
            if args.action == "status":
                status = client.tasks.status(args.task_id, include_log=args.log)
                _log_status(status)
                if args.log and status.log:
                    logger.info(status.log)
            elif args.action == "wait":
                _log_status(client.tasks.wait_for(args.task_id, args.max_seconds))
            elif args.action == "cancel":
                client.tasks.cancel(args.task_id)
                logger.info(f"Task {args.task_id} cancelled.")
            else:
                client.tasks.release(args.task_id)
                logger.info(f"Task {args.task_id} released.")

    def _run_search(self, args: argparse.Namespace) -> None:
        try:
            pattern = parse_pattern(args.pattern)
        except argparse.ArgumentTypeError as e:
            sys.exit(str(e))
        with self._open_client(args) as client:
            matches = client.search.search(
                pattern,
                args.participant,
                args.transcript_type,
                main_participant=not args.all_participants,
                aligned=args.aligned,
                matches_per_transcript=args.matches_per_transcript,
                overlap_threshold=args.overlap_threshold,
                words_context=args.words_context,
                max_matches=args.max_matches,
            )
        df = matches_dataframe(matches)
        if args.output:
            df.to_csv(args.output, index=False, encoding="utf-8")
            logger.info(f"Matches saved to {args.output} ({len(df)} rows)")
        else:
            df.to_csv(sys.stdout, index=False)

    def _run_upload(self, args: argparse.Namespace) -> None:
        try:
            given = parse_assignments(args.param)
        except argparse.ArgumentTypeError as e:
            sys.exit(str(e))
        transcript = Path(args.transcript)
        media = {args.track_suffix: [Path(m) for m in args.media or []]}
        with self._open_client(args) as client:
            upload = client.uploads.submit(transcript, media, merge=args.merge)
            try:
                upload = self._fill_upload(upload, given)
                resolved = client.uploads.resolve(upload)
            except BaseException:
                # an unresolved upload must not stay pending on the server
                client.uploads.discard_quietly(upload)
                raise
            for name, task_id in (resolved.transcripts or {}).items():
                logger.info(f"{name}: task {task_id}")
                if args.wait:
                    _log_status(client.tasks.wait_for(task_id))

    def _run_fragments(self, args: argparse.Namespace) -> None:
        df = pd.read_csv(args.matches_csv)
        missing = {"Transcript", "Line", "LineEnd"} - set(df.columns)
        if missing:
            sys.exit(f"{args.matches_csv} lacks columns: {', '.join(sorted(missing))}")
        output_dir = Path(args.output_dir)
        with self._open_client(args) as client:
            files = client.search.sound_fragments(
                df["Transcript"].tolist(),
                df["Line"].tolist(),
                df["LineEnd"].tolist(),
                args.sample_rate,
                output_dir,
            )
        saved = sum(1 for f in files if f is not None)
        logger.info(f"Fragments: {saved} saved to {output_dir}, {len(files) - saved} failed")

    def _run_load_test(self, args: argparse.Namespace) -> None:
        cfg = self._load_config(args)
        self._require_url(cfg)
        if not is_interactive_disabled():
            cfg = cfg.ensure_credentials()
        options = LoadTestOptions(
            clients=args.clients,
            repetitions=args.repetitions,
            client_delay=args.client_delay,
            search_for=args.search_for,
            other_layer=args.other_layer,
            max_matches=args.max_matches,
            match_annotations=not args.no_match_annotations,
            fragments=not args.no_fragments,
            sound_fragments=not args.no_sound_fragments,
        )
        tester = LoadTester(
            lambda: self._client_factory(cfg, verbose=args.verbose, batch_mode=True),
            options,
        )
        summary = tester.run()
        logger.info("Mean seconds per step:\n" + summary.to_string(index=False))

    def _run_command(self, args: argparse.Namespace) -> None:
        """Dispatch parsed args through the command table."""
        command = self._commands.get(args.command)
        if command is None:
            sys.exit(f"Unknown command: {args.command}")
        try:
            command(args)
        except LabbcatError as e:
            sys.exit(f"Error: {e}")

    def run(self, argv: list[str] | None = None) -> None:
        """Run the CLI with the given arguments."""
        args = self._parser.parse_args(argv)
        configure_logging(verbose=args.verbose)
        self._run_command(args)


def main(argv: list[str] | None = None) -> None:
    """Entry point for the ``labbcat`` console script."""
    CliApp().run(argv)


if __name__ == "__main__":
    main()
