from __future__ import annotations

import argparse
import time
from typing import Iterable, List, Optional

from wartracker.config import load_settings
from wartracker.database import StorageEngine
from wartracker.models.member import Member
from wartracker.services.leader import get_leader
from wartracker.services.roster import RosterStore


def describe_lease(storage: StorageEngine, lease_duration: float, *, now: Optional[float] = None) -> str:
    lease = get_leader(storage)
    if lease is None:
        return "Leader: (none)"
    ts = time.time() if now is None else now
    state = "STALE" if lease.is_stale(ts, lease_duration) else "fresh"
    return f"Leader: {lease.owner} (age {lease.age(ts):.1f}s, {state}; lease {lease_duration:g}s)"


def format_roster_table(members: Iterable[Member]) -> str:
    lines = ["Roster dump:"]
    for m in members:
        lines.append(
            f"{m.discord_id} => {m.in_game_name} Orders:{m.war_orders} Lumber:{m.lumber} "
            f"Av:{m.availability} Role:{m.guild_role_id or '-'}"
        )
    return "\n".join(lines)


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Show the leader lease and, optionally, the roster.")
    parser.add_argument("--config", default=None, help="Path to config.json")
    parser.add_argument("--roster", action="store_true", help="Also dump all roster members")
    args = parser.parse_args(argv)

    settings = load_settings(args.config)
    storage = StorageEngine.from_settings(settings)
    try:
        storage.init_schema()
        print(describe_lease(storage, settings.lease_duration_s))
        if args.roster:
            members = RosterStore(storage).get_all_members()
            print(format_roster_table(members))
    finally:
        storage.close()


if __name__ == "__main__":
    main()
