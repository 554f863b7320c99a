import argparse
import csv
import datetime
import io
import json
import logging
import shutil

from config import YamlConfig
from db import ActivityRecordRepository
from rest_api import CoachAPI


def export_records(db_path: str, student_id: str, fmt: str, output_dir: str = ".") -> str:
    """Write the student's activity records to ``output_dir`` and return the path."""
    records = ActivityRecordRepository(db_path).fetch_for_student(student_id)
    if fmt == "json":
        data = json.dumps([r.to_dict() for r in records], indent=2)
        out_path = f"{output_dir}/progress_{student_id}.json"
    else:
        buf = io.StringIO()
        writer = csv.writer(buf)
        writer.writerow(["Session", "Saved", "Completed", "Set", "Weight", "Reps"])
        for record in records:
            sets = [s for s in record.sets if isinstance(s, dict)] or [{}]
            for idx, entry in enumerate(sets, start=1):
                writer.writerow(
                    [
                        record.session_id,
                        record.saved_at.isoformat(),
                        record.completed,
                        idx if entry else "",
                        entry.get("weight", ""),
                        entry.get("reps", ""),
                    ]
                )
        data = buf.getvalue()
        out_path = f"{output_dir}/progress_{student_id}.csv"
    with open(out_path, "w", encoding="utf-8", newline="") as f:
        f.write(data)
    return out_path


def backup_db(db_path: str, backup_path: str) -> None:
    shutil.copy(db_path, backup_path)


def restore_db(backup_path: str, db_path: str) -> None:
    shutil.copy(backup_path, db_path)


def demo_data(db_path: str, yaml_path: str, student_id: str = "demo") -> None:
    """Populate the database with a week of demo sessions if empty."""
    api = CoachAPI(db_path=db_path, yaml_path=yaml_path)
    if api.records.fetch_for_student(student_id):
        print("Database already contains progress for", student_id)
        return
    now = datetime.datetime.now()
    for day in range(5):
        api.records.save(
            student_id,
            f"demo-session-{day + 1}",
            {
                "completed": True,
                "sets": [
                    {"weight": 60.0 + day * 2.5, "reps": 8},
                    {"weight": 65.0 + day * 2.5, "reps": 6},
                ],
            },
            saved_at=now - datetime.timedelta(days=day),
        )
    awarded = api.badges.award_completion_badges(student_id)
    print(f"Demo data inserted, {len(awarded)} badges awarded")


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Utility commands")
    parser.add_argument("--yaml", default="settings.yaml")
    parser.add_argument("--log-level", default=None)
    sub = parser.add_subparsers(dest="cmd", required=True)

    srv = sub.add_parser("serve")
    srv.add_argument("--db", default="coach.db")
    srv.add_argument("--host", default="127.0.0.1")
    srv.add_argument("--port", type=int, default=8000)

    demo = sub.add_parser("demo")
    demo.add_argument("--db", default="coach.db")
    demo.add_argument("--student", default="demo")

    prog = sub.add_parser("progress")
    prog.add_argument("--db", default="coach.db")
    prog.add_argument("--student", required=True)

    stats = sub.add_parser("stats")
    stats.add_argument("--db", default="coach.db")
    stats.add_argument("--student", required=True)

    award = sub.add_parser("award")
    award.add_argument("--db", default="coach.db")
    award.add_argument("--student", required=True)
    award.add_argument("--event", required=True)
    award.add_argument("--metadata", default=None, help="JSON object")

    exp = sub.add_parser("export")
    exp.add_argument("--db", default="coach.db")
    exp.add_argument("--student", required=True)
    exp.add_argument("--fmt", choices=["csv", "json"], default="csv")
    exp.add_argument("--out", default=".")

    bkp = sub.add_parser("backup")
    bkp.add_argument("--db", default="coach.db")
    bkp.add_argument("--out", default="backup.db")

    rst = sub.add_parser("restore")
    rst.add_argument("--in", dest="src", default="backup.db")
    rst.add_argument("--db", default="coach.db")

    args = parser.parse_args(argv)
    settings = YamlConfig(args.yaml).load()
    logging.basicConfig(level=(args.log_level or settings["log_level"]).upper())

    if args.cmd == "serve":
        import uvicorn

        uvicorn.run(CoachAPI(args.db, args.yaml).app, host=args.host, port=args.port)
    elif args.cmd == "demo":
        demo_data(args.db, args.yaml, args.student)
    elif args.cmd == "progress":
        api = CoachAPI(args.db, args.yaml)
        print(json.dumps(api.badges.badge_progress(args.student)))
    elif args.cmd == "stats":
        api = CoachAPI(args.db, args.yaml)
        print(json.dumps(api.statistics.student_stats(args.student)))
    elif args.cmd == "award":
        api = CoachAPI(args.db, args.yaml)
        metadata = json.loads(args.metadata) if args.metadata else None
        result = api.badges.evaluate(args.student, args.event, metadata)
        award = result.award
        print(
            json.dumps(
                {
                    "status": result.status,
                    "award": award.to_dict() if award is not None else None,
                }
            )
        )
    elif args.cmd == "export":
        print(export_records(args.db, args.student, args.fmt, args.out))
    elif args.cmd == "backup":
        backup_db(args.db, args.out)
    elif args.cmd == "restore":
        restore_db(args.src, args.db)


if __name__ == "__main__":
    main()
