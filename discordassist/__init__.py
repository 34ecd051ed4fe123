"""
DiscordAssist — Support Bot Dashboard for Discord
===================================================
Lets server owners sign in with Discord, configure a per-guild support bot
(AI model, system prompt, policy document, channel/role permissions), and
watch how it is used through command logs, reviews, and usage statistics.

Package layout::

    discordassist/
    ├── config.py          # config.yaml + env → typed Python config
    ├── constants.py       # Defaults, allow lists, Discord URLs
    ├── errors.py          # Error taxonomy shared by API and bot
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   └── models.py      # ORM models for the durable backend
    ├── storage/
    │   ├── base.py        # Storage interface + shared aggregations
    │   ├── factory.py     # Backend selection from config
    │   ├── records.py     # Plain records returned by every backend
    │   ├── memory.py      # Process-lifetime backend
    │   └── sql.py         # Single-file SQLite backend
    ├── services/
    │   ├── auth_service.py     # Discord OAuth2 code → identity → user
    │   ├── session_service.py  # Server-side sessions + signed cookie token
    │   └── response_service.py # Pluggable answer generation
    ├── bot/
    │   ├── client.py      # discord.Client subclass, one per bot config
    │   ├── commands.py    # Slash-command definitions + handlers
    │   ├── manager.py     # Lifecycle manager + interaction dispatch
    │   └── __main__.py    # Standalone runner
    └── api/
        ├── main.py        # FastAPI app
        ├── deps.py        # Dependency wiring
        ├── auth.py        # OAuth start/callback, manual login, logout
        └── routes/        # Bot config, lifecycle and dashboard endpoints
"""

__version__ = "0.1.0"
