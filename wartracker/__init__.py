"""
wartracker: guild roster bot with active/standby leader election.

Layout:
- wartracker.config     settings (env / .env / config.json)
- wartracker.database   serialized storage engine
- wartracker.models     SQLModel tables (leader lease, members)
- wartracker.services   leader election, lease renewal, roster store
- wartracker.discord    Discord client, slash commands and bootstrap
"""

__version__ = "0.1.0"
