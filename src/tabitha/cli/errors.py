"""Tabitha rich error messages: what went wrong, then the exact fix.

Usage:
    from tabitha.cli.errors import err_no_tabs_file
    console.print(err_no_tabs_file(path))
    raise typer.Exit(1)
"""

from __future__ import annotations


def err_no_api_key(provider: str) -> str:
    """No API key for *provider*; the deterministic fallback is used."""
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
        f"[yellow]Warning:[/] No API key for '{provider}'. Using the offline router.\n"
        f"  Set:  export {env_var}=sk-..."
    )


def err_no_tabs_file(path: str) -> str:
    """The --tabs file does not exist."""
    return (
        f"[red]Error:[/] Tabs file not found: '{path}'\n"
        "  Create a YAML file with a 'tabs:' or 'windows:' list, e.g.:\n"
        "    tabs:\n"
        "      - {url: https://mail.google.com/mail/u/0, title: Inbox}"
    )


def err_bad_tabs_file(path: str, detail: str) -> str:
    """The --tabs file is not valid YAML or has the wrong shape."""
    return (
        f"[red]Error:[/] Could not read tabs file '{path}': {detail}\n"
        "  Each tab needs at least a 'url'. Check the file and run again."
    )


def err_empty_query() -> str:
    return (
        "[red]Error:[/] Nothing to search for.\n"
        '  Run:  tabitha search "cover letter" --tabs tabs.yaml'
    )


def err_config(detail: str) -> str:
    """tabitha.yaml or the global config is invalid."""
    return (
        f"[red]Error:[/] Invalid configuration: {detail}\n"
        "  Fix tabitha.yaml (or ~/.tabitha/config.yaml) and run again."
    )


def err_no_db(db_path: str = ".tabitha.db") -> str:
    """No index database yet."""
    return (
        f"[yellow]No database found at '{db_path}'.[/]\n"
        '  Run:  tabitha ask "<utterance>" --tabs tabs.yaml'
    )
