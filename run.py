import argparse
import sys
from pathlib import Path

import uvicorn

from site_access.core.config import get_settings
from site_access.core.logger import setup_logger
from site_access.core.security import create_access_token
from site_access.exceptions import AccessControlError
from site_access.types import AccessAction, OperationContext, Role


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Construction site access control service"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the HTTP/WebSocket API")
    serve.add_argument("--host", default="0.0.0.0", help="Host interface")
    serve.add_argument("--port", type=int, default=8000, help="Port")
    serve.add_argument("--reload", action="store_true", help="Reload on code changes (development)")

    subparsers.add_parser("init-db", help="Create database tables for the SQL store")

    token = subparsers.add_parser("issue-token", help="Issue a bearer token for a guard or supervisor")
    token.add_argument("--subject", required=True, help="User ID recorded as the actor")
    token.add_argument(
        "--role",
        choices=[role.value for role in Role],
        default=Role.GUARD.value,
        help="Role carried by the token",
    )
    token.add_argument("--minutes", type=int, default=None, help="Token lifetime override")

    identify = subparsers.add_parser("identify", help="Match a face photo against a site's candidates")
    identify.add_argument("--site", required=True, help="Site ID")
    identify.add_argument(
        "--action",
        choices=[action.value for action in AccessAction],
        default=AccessAction.ENTRY.value,
        help="Candidate pool to match against",
    )
    identify.add_argument("--image", type=Path, required=True, help="JPEG/PNG photo path")
    identify.add_argument(
        "--commit",
        action="store_true",
        help="Register the entry/exit for the matched person",
    )
    identify.add_argument("--actor", default=None, help="User ID recorded when committing")

    return parser


def main() -> int:
    parser = build_parser()
    args = parser.parse_args()
    logger = setup_logger()

    try:
        if args.command == "serve":
            uvicorn.run(
                "site_access.main:app",
                host=args.host,
                port=args.port,
                reload=args.reload,
                log_level=get_settings().log_level.lower(),
            )
            return 0

        if args.command == "init-db":
            from site_access.db.session import engine, init_db

            init_db()
            print(f"Database ready: {engine.url.render_as_string(hide_password=True)}")
            return 0

        if args.command == "issue-token":
            print(create_access_token(args.subject, args.role, minutes=args.minutes))
            return 0

        if args.command == "identify":
            from site_access.services import get_services
            from site_access.services.embedding import decode_image

            services = get_services()
            frame = decode_image(args.image.read_bytes())
            ctx = OperationContext(site_id=args.site, actor_id=args.actor, actor_role=Role.GUARD)
            action = AccessAction(args.action)

            if args.commit:
                identification, result = services.recognition.scan(ctx, action, frame_bgr=frame)
            else:
                identification, result = services.recognition.identify(ctx, action, frame), None

            person = identification.person
            print(f"Matched: {person.full_name} (CI {person.ci}) distance={identification.match.distance:.3f}")
            print(f"Inside: {'yes' if identification.inside else 'no'}")
            if result is not None:
                print(f"{result.action.value}: {result.outcome} {result.message}".rstrip())
            return 0

    except AccessControlError as exc:
        logger.error("Application error: %s", exc)
        print(f"Error [{exc.code}]: {exc}")
        return 1
    except OSError as exc:
        logger.error("I/O error: %s", exc)
        print(f"Error: {exc}")
        return 1
    except KeyboardInterrupt:
        print("\nStopped by user.")
        return 1
    except Exception as exc:
        logger.exception("Unexpected failure")
        print(f"Unexpected error: {exc}")
        return 1

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
