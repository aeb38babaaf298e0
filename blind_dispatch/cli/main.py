from __future__ import annotations

import asyncio
import os
from pathlib import Path

import typer
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

from ..core.blind_assignment import assign_models, list_exercise_models, preview_assignments
from ..core.dispatcher import Dispatcher
from ..core.errors import BlindDispatchError
from ..core.factory import DEFAULT_API_KEY_ENVS, use_mocks
from ..core.logging_utils import configure_logging
from ..core.model_config import ModelConfigLoader
from ..core.runtime_data import get_runtime_paths
from ..core.sqlite_store import connect, fetch_models
from ..core.types import GenerationRequest

app = typer.Typer()


def _split_ids(raw: str) -> list[str]:
    return [part.strip() for part in raw.split(",") if part.strip()]


def _open_store():
    runtime_paths = get_runtime_paths()
    configure_logging(runtime_paths.logs_dir)
    return runtime_paths, connect(runtime_paths.db_path)


@app.command("models:sync")
def models_sync(config: Path = None, skip_exercises: bool = False) -> None:
    """Load models (and exercise seeds) from the YAML catalog into the store."""
    loader = ModelConfigLoader(config) if config else ModelConfigLoader()
    _, conn = _open_store()
    try:
        synced = loader.sync(conn, include_exercises=not skip_exercises)
    except BlindDispatchError as e:
        typer.echo(f"❌ {e}")
        raise typer.Exit(1)
    finally:
        conn.close()
    typer.echo(f"✅ Synced {len(synced)} model(s) from {loader.config_path}")


@app.command("models:list")
def models_list() -> None:
    """List registered models grouped by provider."""
    _, conn = _open_store()
    models = fetch_models(conn)
    conn.close()

    if not models:
        typer.echo("❌ No models registered. Run models:sync first.")
        raise typer.Exit(1)

    mock_mode = use_mocks()
    providers: dict[str, list] = {}
    for model in models:
        providers.setdefault(model.provider, []).append(model)

    typer.echo("🤖 Registered Models:")
    typer.echo("")
    for provider, items in providers.items():
        typer.echo(f"💻 {provider.upper()}:")
        for model in items:
            key_env = model.configuration.get("apiKeyEnv") or DEFAULT_API_KEY_ENVS.get(provider)
            has_key = mock_mode or not key_env or bool(os.environ.get(key_env))
            status = "✅" if model.is_active and has_key else "❌"
            caps = ",".join(sorted(model.capabilities))
            suffix = "" if model.is_active else " (inactive)"
            typer.echo(f"  {status} {model.id} - {model.model_id} [{caps}]{suffix}")
        typer.echo("")


@app.command("models:test")
def models_test(model_id: str, image: bool = False) -> None:
    """Check a model's provider connection (or run a small image generation with --image)."""
    _, conn = _open_store()
    dispatcher = Dispatcher(conn)
    try:
        if image:
            result = asyncio.run(dispatcher.test_image(model_id))
        else:
            result = asyncio.run(dispatcher.test_model(model_id))
    except BlindDispatchError as e:
        typer.echo(f"❌ {e}")
        raise typer.Exit(1)
    finally:
        conn.close()

    if result.get("success"):
        task = f" (task {result['taskId']})" if result.get("taskId") else ""
        typer.echo(f"✅ {model_id} is reachable{task}")
    else:
        typer.echo(f"❌ {model_id}: {result.get('error')}")
        raise typer.Exit(1)


@app.command("exercise:preview")
def exercise_preview(models: str) -> None:
    """Show the blind labels a comma-separated model list would receive."""
    try:
        preview = preview_assignments(_split_ids(models))
    except BlindDispatchError as e:
        typer.echo(f"❌ {e}")
        raise typer.Exit(1)
    for item in preview:
        typer.echo(f"  {item['blindName']}: {item['modelId']}")


@app.command("exercise:assign")
def exercise_assign(exercise_id: str, models: str = "") -> None:
    """Replace an exercise's model list; labels follow list order."""
    _, conn = _open_store()
    try:
        assignments = assign_models(conn, exercise_id, _split_ids(models))
    except BlindDispatchError as e:
        typer.echo(f"❌ {e}")
        raise typer.Exit(1)
    finally:
        conn.close()
    if not assignments:
        typer.echo(f"⚠️  Exercise {exercise_id} now has no models configured")
        return
    typer.echo(f"✅ Assigned {len(assignments)} model(s) to {exercise_id}")
    for a in assignments:
        typer.echo(f"  {a.blind_name}: {a.model_id}")


@app.command("exercise:show")
def exercise_show(exercise_id: str, include_inactive: bool = False) -> None:
    """Show an exercise's models as participants see them."""
    _, conn = _open_store()
    items = list_exercise_models(conn, exercise_id, include_inactive=include_inactive)
    conn.close()
    if not items:
        typer.echo(f"No models configured for {exercise_id}")
        return
    for item in items:
        marker = "" if item.usable else " (unavailable)"
        typer.echo(f"  {item.blind_name}: {item.assignment.model_id}{marker}")


@app.command("chat")
def chat(exercise_id: str, model_id: str, prompt: str, image: bool = False) -> None:
    """Send one prompt through the blind dispatch path and print the masked reply."""
    runtime_paths, conn = _open_store()
    dispatcher = Dispatcher(conn, assets_dir=runtime_paths.assets_dir)
    request = GenerationRequest(exercise_id=exercise_id, model_id=model_id, prompt=prompt)
    try:
        if image:
            outcome = asyncio.run(dispatcher.generate_image(request))
        else:
            outcome = asyncio.run(dispatcher.generate_text(request))
    except BlindDispatchError as e:
        typer.echo(f"❌ {type(e).__name__}: {e}")
        raise typer.Exit(1)
    finally:
        conn.close()

    payload = outcome.payload
    typer.echo(f"🤖 {payload['model']}:")
    typer.echo(payload.get("content") or payload.get("imageUrl") or "")
    if outcome.persistence_warning:
        typer.echo(f"⚠️  {outcome.persistence_warning}")


if __name__ == "__main__":
    app()
