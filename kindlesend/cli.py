import typer
from pathlib import Path
from typing import Optional

from .pipeline import mask_email

app = typer.Typer(name="kindlesend")

def _check_config_path(config_path: Optional[str]):
    if config_path and not Path(config_path).exists():
        typer.echo(f"❌ Error: Configuration file '{config_path}' not found.", err=True)
        typer.echo("   Create a config file from config.example.yaml, or omit --config to use UBOT_* environment variables")
        raise typer.Exit(1)

@app.command()
def run(
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to configuration file (UBOT_* environment variables are used when omitted)"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose output"),
    test_mode: bool = typer.Option(False, "--test", "-t", help="Test configuration and dependencies only")
):
    """
    Run the Send-to-Kindle Telegram bot.

    Use --test to validate configuration, Calibre, SMTP and the bot token without starting the bot.
    """
    _check_config_path(config_path)
    source = config_path or "environment"

    if test_mode:
        typer.echo(f"🧪 Testing configuration from {source}...")
        from .validate import validate_config

        results = validate_config(config_path)
        failed = False
        for name, result in results.items():
            mark = "✅" if result.success else "❌"
            typer.echo(f"   {mark} {result.message}")
            if result.error:
                typer.echo(f"      {result.error}", err=True)
            failed = failed or not result.success

        if failed:
            typer.echo("\n❌ Configuration test failed", err=True)
            raise typer.Exit(1)
        typer.echo("\n🎉 Configuration test completed!")
        typer.echo("   Run without --test to start the bot")
        return

    try:
        from .main import run_bot

        typer.echo(f"🚀 Starting Send-to-Kindle bot with config: {source}")
        if verbose:
            typer.echo("📝 Verbose mode enabled")
        run_bot(config_path, verbose)
    except Exception as e:
        typer.echo(f"❌ Bot failed: {e}", err=True)
        typer.echo(f"   📋 Full error details:", err=True)
        import traceback
        typer.echo(traceback.format_exc(), err=True)
        raise typer.Exit(1)

@app.command()
def devices(
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to configuration file (UBOT_* environment variables are used when omitted)"
    )
):
    """
    List the Kindle devices the bot will offer.
    """
    _check_config_path(config_path)
    from .main import load_config

    try:
        registry = load_config(config_path).devices.to_registry()
    except ValueError as e:
        typer.echo(f"❌ Configuration invalid: {e}", err=True)
        raise typer.Exit(1)

    if len(registry.devices) > 1:
        typer.echo(f"📱 {len(registry.devices)} Kindle devices (users choose per file):")
        for label in registry.labels:
            typer.echo(f"   - {label}: {mask_email(registry.devices[label])}")
    else:
        typer.echo(f"📱 Single destination: {mask_email(registry.single_destination())}")
    if registry.fallback_address and len(registry.devices) > 1:
        typer.echo(f"   (fallback {mask_email(registry.fallback_address)} is unused while several devices exist)")

if __name__ == "__main__":
    app()
