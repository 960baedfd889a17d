import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

from plugin_gate.app_container import build_plugin_registry, register_startup_plugins
from plugin_gate.config import DEFAULT_CONFIG_DIR, Config, load_config

logger = logging.getLogger(__name__)


def _configure_logging(level: str) -> None:
    level = (level or "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _print_config(config: Config) -> None:
    print(f"Config dir: {config.config_dir}")
    print(f"Env file: {config.env_path}")
    print(f"Database: {config.db_path}")
    print(f"Cache TTL: {config.cache_ttl_sec:g}s")
    print(f"Internal plugins: {', '.join(config.internal_plugins) or '-'}")
    print(f"Builtin plugins: {', '.join(config.builtin_plugins) or '-'}")
    print(f"Token present: {'yes' if config.token else 'no'}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Plugin/group permission registry for bots")
    parser.add_argument(
        "--config-dir",
        default=str(DEFAULT_CONFIG_DIR),
        help="Directory holding the .env config (default: ~/.config/plugin-gate)",
    )
    parser.add_argument("--print-config", action="store_true", help="Print active config summary")
    parser.add_argument(
        "--control-center",
        action="store_true",
        help="Serve the admin HTTP API instead of Telegram polling mode",
    )
    parser.add_argument("--host", default="127.0.0.1", help="Control Center bind host")
    parser.add_argument("--port", type=int, default=8766, help="Control Center bind port")
    parser.add_argument("--log-level", default=os.environ.get("LOG_LEVEL", "INFO"))

    args = parser.parse_args()
    _configure_logging(args.log_level)
    config = load_config(Path(args.config_dir).expanduser().resolve())

    if args.print_config:
        _print_config(config)
        return

    registry = build_plugin_registry(db_path=config.db_path, cache_ttl_sec=config.cache_ttl_sec)

    async def _startup(*_: object) -> None:
        await register_startup_plugins(
            registry,
            internal=config.internal_plugins,
            builtin=config.builtin_plugins,
        )

    if args.control_center:
        asyncio.run(_startup())
        import uvicorn

        from plugin_gate.control_center.app import create_app

        app = create_app(registry)
        uvicorn.run(app, host=args.host, port=args.port, log_level=args.log_level.lower())
        return

    if not config.token:
        logger.error("Missing TELEGRAM_BOT_TOKEN.")
        sys.exit(1)

    from plugin_gate.telegram_bot import build_application

    application = build_application(token=config.token, registry=registry, post_init=_startup)
    application.run_polling(close_loop=False)


if __name__ == "__main__":
    main()
