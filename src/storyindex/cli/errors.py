"""storyindex rich error messages: actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from storyindex.cli.errors import err_no_api_key
    console.print(err_no_api_key("openai"))
    raise typer.Exit(1)
"""

from __future__ import annotations


def err_no_api_key(provider: str) -> str:
    """No API key for *provider*.

    Example:
        No API key for 'openai'. Set:  export OPENAI_API_KEY=sk-...
    """
    env_map = {
        "openai": "OPENAI_API_KEY",
        "anthropic": "ANTHROPIC_API_KEY",
        "cohere": "COHERE_API_KEY",
        "gemini": "GEMINI_API_KEY",
        "mistral": "MISTRAL_API_KEY",
        "azure": "AZURE_API_KEY",
    }
    env_var = env_map.get(provider.lower(), f"{provider.upper()}_API_KEY")
    return (
        f"[red]Error:[/] No API key for '{provider}'.\n"
        f"  Set:  export {env_var}=sk-...\n"
        "  Or point the model at a local server with api_base in storyindex.yaml."
    )


def err_folder_not_found(folder: str) -> str:
    """Input folder does not exist or is not a directory."""
    return (
        f"[red]Error:[/] Input folder not found: '{folder}'\n"
        "  Use:  storyindex index PATH/TO/STORIES"
    )


def err_no_db(db_path: str = ".storyindex.db") -> str:
    """No corpus database found."""
    return (
        f"[red]Error:[/] No corpus database found at '{db_path}'.\n"
        "  Run:  storyindex index PATH/TO/STORIES"
    )


def err_settings_mismatch(field: str, stored: str, current: str) -> str:
    """Corpus was built with another embedding model or dimension."""
    return (
        f"[red]Error:[/] Embedding {field} mismatch.\n"
        f"  Corpus uses:     {stored}\n"
        f"  This run uses:   {current}\n"
        "  Mixing embedding spaces makes vector search meaningless.\n"
        "  Run:  storyindex index PATH --force-reindex  to rebuild with the new model,\n"
        "  or set embedding.model in storyindex.yaml back to the corpus model."
    )


def err_probe_failed(model: str, detail: str) -> str:
    """The embedding dimension probe failed; nothing was indexed."""
    return (
        f"[red]Error:[/] Could not reach embedding model '{model}'.\n"
        f"  {detail}\n"
        "  Nothing was indexed. Check the model name and api_base in storyindex.yaml,\n"
        "  then run:  storyindex index PATH"
    )


def err_config(detail: str) -> str:
    """Configuration file failed validation."""
    return (
        f"[red]Error:[/] Invalid configuration: {detail}\n"
        "  Fix storyindex.yaml (or ~/.storyindex/config.yaml) and run the command again."
    )


def err_storage(detail: str) -> str:
    """Corpus database or object store could not be opened."""
    return (
        f"[red]Error:[/] Storage unavailable: {detail}\n"
        "  Check storage.db_path and storage.object_dir in storyindex.yaml."
    )


def warn_flagged_files(count: int, report_path: str) -> str:
    """Some files were indexed with a non-OK quality status."""
    return (
        f"[yellow]⚠[/] {count} file(s) flagged for review.\n"
        f"  See:  {report_path}"
    )


def warn_failed_files(count: int, report_path: str) -> str:
    """Some files could not be indexed."""
    return (
        f"[yellow]⚠[/] {count} file(s) failed and were not indexed.\n"
        f"  See:  {report_path}\n"
        "  Fix or remove them, then run:  storyindex reindex PATH"
    )
