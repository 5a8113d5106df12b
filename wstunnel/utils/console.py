"""Rich console utilities for consistent output formatting."""

from rich.console import Console


class TunnelConsole:
    """Wrapper around Rich Console with consistent styling."""

    def __init__(self):
        self.console = Console(stderr=True)

    def print_success(self, message: str) -> None:
        """Print success message in green."""
        self.console.print(f"✓ {message}", style="green")

    def print_error(self, message: str) -> None:
        """Print error message in red."""
        self.console.print(f"✗ {message}", style="red bold")

    def print_warning(self, message: str) -> None:
        """Print warning message in yellow."""
        self.console.print(f"⚠ {message}", style="yellow")

    def print_info(self, message: str) -> None:
        """Print info message in cyan."""
        self.console.print(f"ℹ {message}", style="cyan")

    def print_header(self, title: str) -> None:
        """Print a formatted header."""
        self.console.print(f"\n=== {title} ===", style="bold cyan")


console = TunnelConsole()
