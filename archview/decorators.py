"""Decorators for archview CLI commands."""

import functools
import logging
from typing import Callable, Any

import typer
import yaml
from rich.console import Console
from rich.markup import escape

from .errors import ArchviewError, CriteriaError, ModelError, ViewError

logger = logging.getLogger(__name__)
console = Console(stderr=True)


def handle_model_errors(func: Callable) -> Callable:
    """
    Decorator to handle common model and view errors in CLI commands.

    Centralizes error reporting for:
    - FileNotFoundError: Declaration file doesn't exist
    - yaml.YAMLError: Unreadable declaration file
    - ModelError: Model could not be built
    - CriteriaError: Invalid selection criteria
    - ViewError: View could not be composed
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs) -> Any:
        try:
            return func(*args, **kwargs)
        except FileNotFoundError as e:
            console.print(f"[bold red]Error:[/bold red] File not found: {escape(str(e))}")
            raise typer.Exit(code=1)
        except yaml.YAMLError as e:
            console.print(f"[bold red]Error:[/bold red] Invalid YAML: {escape(str(e))}")
            raise typer.Exit(code=1)
        except ModelError as e:
            console.print(f"[bold red]Model error:[/bold red] {escape(str(e))}")
            raise typer.Exit(code=1)
        except CriteriaError as e:
            console.print(f"[bold red]Invalid criteria:[/bold red] {escape(str(e))}")
            raise typer.Exit(code=1)
        except ViewError as e:
            console.print(f"[bold red]View error:[/bold red] {escape(str(e))}")
            raise typer.Exit(code=1)
        except ArchviewError as e:
            console.print(f"[bold red]Error:[/bold red] {escape(str(e))}")
            raise typer.Exit(code=1)
        except KeyboardInterrupt:
            console.print("\n[yellow]Operation cancelled by user[/yellow]")
            raise typer.Exit(code=130)

    return wrapper
