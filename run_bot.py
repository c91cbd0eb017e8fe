"""
Bot entrypoint.

Operator notes:
- This file should remain extremely small and boring.
- All configuration validation happens inside run_bot().
- Several copies may be started against the same database; only the lease
  holder connects to Discord, the others wait on standby.
"""

import logging
import sys

from wartracker.config import ConfigError
from wartracker.discord.bot import run_bot


def main() -> None:
    try:
        run_bot()
    except KeyboardInterrupt:
        pass
    except ConfigError as exc:
        print(f"\n❌ Configuration error: {exc}\n")
        sys.exit(1)
    except Exception:
        # Fail loud and early with a clear signal for operators.
        logging.basicConfig(level=logging.ERROR)
        logging.exception("Discord bot failed to start.")
        print("\n❌ Discord bot failed to start.")
        print("   See error above. Most common causes:")
        print("   - DISCORD_BOT_TOKEN / BotToken missing or invalid")
        print("   - DB_PATH points at a directory the bot cannot write")
        print("   - Server Members intent not enabled in the developer portal\n")
        sys.exit(1)


if __name__ == "__main__":
    main()
