"""Command line interface"""

import argparse
import json
import sys
from typing import List, Optional

from saveknight import settings
from saveknight.exceptions import SaveKnightError
from saveknight.service import SaveKnightService
from saveknight.util.log import enable_debug_logging, logger
from saveknight.util.strings import human_size


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="saveknight", description="Find game saves and back them up to SaveKnight")
    parser.add_argument("--version", action="version", version="%s %s" % (settings.PROJECT, settings.VERSION))
    parser.add_argument("-d", "--debug", action="store_true", help="Show debug messages")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("status", help="Show the account this device is connected to")

    login_parser = subparsers.add_parser("login", help="Register this device with a web session cookie")
    login_parser.add_argument("--cookie", required=True, help="Value of the connect.sid cookie")
    login_parser.add_argument("--device-name", help="Name shown for this device in your account")

    subparsers.add_parser("logout", help="Forget the device token")

    scan_parser = subparsers.add_parser("scan", help="List the games having saves on this machine")
    scan_parser.add_argument("-j", "--json", action="store_true", help="Print the result as JSON")

    subparsers.add_parser("profiles", help="List the game profiles of the account")

    backup_parser = subparsers.add_parser("backup", help="Upload the saves of some games")
    backup_parser.add_argument("games", nargs="*", metavar="GAME", help="Name of a detected game")
    backup_parser.add_argument("-a", "--all", action="store_true", help="Back up every detected game")

    path_parser = subparsers.add_parser("add-path", help="Add a save location for a game")
    path_parser.add_argument("game", metavar="GAME", help="Name of the game, as in the manifest or a new one")
    path_parser.add_argument("pattern", metavar="PATTERN", help="Path of the saves, like <home>/MyGame/saves")
    return parser


def print_auth_status(service: SaveKnightService) -> int:
    state = service.get_auth_status()
    if not state.is_authenticated:
        print("Not connected")
        return 1
    print("Connected as %s (%s plan), device %s" % (state.user_email, state.plan_name, state.device_id))
    return 0


def print_games(games, as_json=False) -> None:
    if as_json:
        print(json.dumps([game.to_dict() for game in games], indent=2))
        return
    for game in games:
        last_modified = game.last_modified.strftime("%Y-%m-%d %H:%M") if game.last_modified else "-"
        print("{:<50} | {:>10} | {}".format(game.name[:50], human_size(game.total_size_bytes), last_modified))
        for path in game.existing_paths:
            print("    %s (%d files)" % (path.resolved_path, path.file_count))


def run_backup(service: SaveKnightService, game_names: List[str], backup_all: bool) -> int:
    if not game_names and not backup_all:
        print("No game given, use --all to back up every detected game")
        return 2
    service.scan_games()
    if backup_all:
        service.select_all()
    for name in game_names:
        if not service.get_detected_game(name):
            print("No saves found for %s" % name)
            continue
        service.select(name)
    if not service.selected_games:
        return 1
    report = service.backup_selected()
    for outcome in report.outcomes:
        if outcome.success:
            print("%s: %s" % (outcome.game_name, outcome.result.message))
        else:
            print("%s: failed (%s)" % (outcome.game_name, outcome.error))
    print("%d succeeded, %d failed" % (report.success_count, report.failure_count))
    return 0 if not report.failure_count else 1


def add_custom_path(service: SaveKnightService, game_name: str, pattern: str) -> int:
    resolved = service.scanner.resolver.resolve(pattern)
    settings.add_custom_path(game_name, pattern)
    found = [path.absolute_path for path in resolved if path.exists]
    print("Added %s for %s" % (pattern, game_name))
    for path in found:
        print("    %s" % path)
    if not found:
        print("Nothing exists there yet")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    if args.debug:
        enable_debug_logging()

    service = SaveKnightService()
    try:
        if args.command == "login":
            service.login(args.cookie, args.device_name)
            return print_auth_status(service)
        if args.command == "add-path":
            return add_custom_path(service, args.game, args.pattern)
        service.restore_session()
        if args.command == "status":
            return print_auth_status(service)
        if args.command == "logout":
            service.logout()
            return 0
        if args.command == "scan":
            print_games(service.scan_games(), as_json=args.json)
            return 0
        if args.command == "profiles":
            for profile in service.get_game_profiles():
                print("{:<40} | {:<50} | {}".format(profile.id, profile.name[:50], profile.platform))
            return 0
        if args.command == "backup":
            return run_backup(service, args.games, args.all)
    except SaveKnightError as ex:
        logger.error(ex.message)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
