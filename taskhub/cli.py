from __future__ import annotations

import argparse
import sys

import uvicorn

from .auth import create_access_token
from .config import get_settings
from .crud import create_staff, get_staff_by_auth_id
from .db import Base, SessionLocal, engine
from .departments import DEPARTMENT_HIERARCHY
from .sweep import sweep


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(prog="taskhub")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser(
        "sweep",
        help="Replicate completed recurring tasks that were not replicated inline.",
    )

    p_staff = sub.add_parser("add-staff", help="Provision a staff record for an external auth identity.")
    p_staff.add_argument("--auth-id", required=True, help="Identifier issued by the identity provider")
    p_staff.add_argument("--name", required=True)
    p_staff.add_argument("--department", default=None, choices=sorted(DEPARTMENT_HIERARCHY))
    p_staff.add_argument("--email", default=None)
    p_staff.add_argument("--manager", action="store_true")
    p_staff.add_argument("--admin", action="store_true")

    p_token = sub.add_parser("token", help="Print a bearer token for an existing staff record.")
    p_token.add_argument("--auth-id", required=True)
    p_token.add_argument("--minutes", type=int, default=None)

    p_serve = sub.add_parser("serve", help="Run the API server with the scheduler.")
    p_serve.add_argument("--host", default=None, help="Defaults to app.host from settings.yml")
    p_serve.add_argument("--port", type=int, default=None, help="Defaults to app.port from settings.yml")

    args = parser.parse_args(argv)

    if args.command == "serve":
        s = get_settings()
        uvicorn.run(
            "taskhub.main:app",
            host=args.host or s.app.host,
            port=int(args.port or s.app.port),
            log_level=s.logging.level.lower(),
        )
        return

    Base.metadata.create_all(bind=engine)

    if args.command == "sweep":
        with SessionLocal() as db:
            report = sweep(db)
        print(report.message)
        for r in report.replicated:
            print(f"  {r.original_id} -> {r.new_id}  {r.title}")
        if report.failed:
            print(f"{report.failed} task(s) failed; see the log for details", file=sys.stderr)
            sys.exit(1)
        return

    if args.command == "add-staff":
        with SessionLocal() as db:
            try:
                staff = create_staff(
                    db,
                    auth_user_id=args.auth_id,
                    full_name=args.name,
                    department=args.department,
                    email=args.email,
                    is_manager=args.manager,
                    is_admin=args.admin,
                )
            except ValueError as e:
                print(str(e), file=sys.stderr)
                sys.exit(2)
            print(staff.id)
        return

    if args.command == "token":
        with SessionLocal() as db:
            staff = get_staff_by_auth_id(db, args.auth_id)
            if not staff:
                print("Unknown staff", file=sys.stderr)
                sys.exit(2)
            print(create_access_token(subject=staff.auth_user_id, is_admin=staff.is_admin, expires_minutes=args.minutes))
        return

    parser.print_help()
    sys.exit(2)


if __name__ == "__main__":
    main()
