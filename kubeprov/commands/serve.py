import typer


def serve_api(
    host: str = typer.Option("127.0.0.1", help="Bind address"),
    port: int = typer.Option(8000, help="Bind port"),
    reload: bool = typer.Option(False, "--reload", help="Reload on code changes"),
):
    """Serve the state and verification API with uvicorn."""
    import uvicorn

    print(f"🚀 Serving kubeprov API on http://{host}:{port}")
    uvicorn.run("kubeprov.api.main:app", host=host, port=port, reload=reload)
