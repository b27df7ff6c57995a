"""
Entry point for the price service.

Usage:
    python -m pricehub
    pricehub  # if installed via pip
"""

import sys


def main() -> int:
    """
    Main entry point.

    Returns:
        Exit code (0 for success).
    """
    import uvicorn

    from pricehub import __version__
    from pricehub.api.server import create_app
    from pricehub.config.settings import get_settings
    from pricehub.telemetry.logger import setup_logging

    # Print banner
    print(
        f"""
╔═══════════════════════════════════════════════════════════════╗
║     PRICEHUB v{__version__:<48}║
║                                                               ║
║     Market price aggregation & caching service                ║
╚═══════════════════════════════════════════════════════════════╝
    """
    )

    # Load settings
    try:
        settings = get_settings()
    except Exception as e:
        print(f"Configuration error: {e}")
        print("\nCheck your .env file, for example:")
        print("  REDIS_URL=redis://localhost:6379/0")
        print("  FX_FALLBACK_RATE=150")
        return 1

    # Print configuration summary
    refresh = (
        f"every {settings.refresh_interval_seconds:.0f}s ({', '.join(settings.refresh_scopes)})"
        if settings.refresh_interval_seconds > 0
        else "external cron"
    )
    print("Configuration:")
    print(f"  KV store:       {'Redis' if settings.uses_redis else 'Memory'}")
    print(f"  FX fallback:    {settings.fx_fallback_rate:.2f} JPY")
    print(f"  FX TTL:         {settings.fx_ttl_seconds}s")
    print(f"  Trade lock TTL: {settings.trade_lock_ttl_seconds}s")
    print(f"  Refresh:        {refresh}")
    print(f"  Listening on:   http://{settings.host}:{settings.port}")
    print()

    if not settings.uses_redis:
        if settings.allow_local_trade_lock:
            print("⚠️  WARNING: Trade locks are process-local.")
            print("    Run a single instance only.")
        else:
            print("⚠️  Trade execution disabled until REDIS_URL is set.")
        print()

    queue_logging = setup_logging(settings.log_level, settings.log_file)
    try:
        uvicorn.run(
            create_app(settings),
            host=settings.host,
            port=settings.port,
            log_level="warning",
        )
        return 0

    except KeyboardInterrupt:
        print("\nInterrupted by user")
        return 0

    finally:
        queue_logging.stop()


if __name__ == "__main__":
    sys.exit(main())
