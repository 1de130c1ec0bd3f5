import os
import json
from typing import Any, Dict, List

from rich.console import Console
from rich.table import Table
from rich.panel import Panel

# Environment variable controlling CLI output mode
# Allowed values: 'plain' (default), 'json', 'rich'
OUTPUT_MODE_ENV = "BOOKSTORE_CLI_OUTPUT"

_console = Console()


def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    if mode in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = mode


def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()


def _print_json(payload: Any) -> None:
    # Decimals and timestamps are written as strings
    print(json.dumps(payload, ensure_ascii=False, default=str))


def print_books(books: List[Any]) -> None:
    """Print books in the current output mode.
    - plain: '<id> - Title by Author (price)' lines, or 'No books in catalog.'
    - json: JSON array of the book dicts
    - rich: Rich table
    """
    mode = get_output_mode()

    if not books:
        print("No books in catalog.")
        return

    if mode == "json":
        _print_json([b.to_dict() for b in books])
    elif mode == "rich":
        table = Table(title="📚 Books", show_lines=True, header_style="bold cyan")
        table.add_column("ID", style="magenta", no_wrap=True)
        table.add_column("Title", style="white")
        table.add_column("Author", style="white")
        table.add_column("ISBN", style="dim")
        table.add_column("Price", justify="right", style="green")
        for b in books:
            table.add_row(str(b.id), b.title, b.author, b.isbn, f"${b.purchase_amount}")
        _console.print(table)
    else:
        for b in books:
            print(f"{b.id} - {b.title} by {b.author} (${b.purchase_amount})")


def print_rentals(rentals: List[Any]) -> None:
    mode = get_output_mode()

    if not rentals:
        print("No rentals.")
        return

    if mode == "json":
        _print_json([r.to_dict() for r in rentals])
    elif mode == "rich":
        table = Table(title="📖 Rentals", header_style="bold cyan")
        table.add_column("ID", style="magenta", no_wrap=True)
        table.add_column("Book", style="white")
        table.add_column("User", style="white")
        table.add_column("Rented", style="dim")
        table.add_column("Status")
        table.add_column("Paid", justify="right", style="green")
        for r in rentals:
            status = "[green]returned[/]" if r.is_returned else "[yellow]active[/]"
            paid = f"${r.payment.amount}" if r.payment else "-"
            table.add_row(str(r.id), r.book_title or str(r.book_id), r.user_id,
                          r.rented_at.strftime("%Y-%m-%d"), status, paid)
        _console.print(table)
    else:
        for r in rentals:
            status = "returned" if r.is_returned else "active"
            print(f"{r.id} - {r.book_title} ({status}, rented {r.rented_at.strftime('%Y-%m-%d')})")


def print_cost(cost: Any) -> None:
    """Print a rental cost breakdown; zero-cost tiers are omitted in plain/rich modes."""
    mode = get_output_mode()

    if mode == "json":
        _print_json(cost.to_dict())
        return

    lines = [f"Rental Days: {cost.rental_days}", f"Free Rental Days: {cost.free_rental_days}"]
    if cost.tier_one_cost > 0:
        lines.append(f"Days 31-60 Cost: ${cost.tier_one_cost}")
    if cost.tier_two_cost > 0:
        lines.append(f"After 60 Days Cost: ${cost.tier_two_cost}")
    if cost.cap_cost > 0:
        lines.append(f"Over 100 Days (purchase price): ${cost.cap_cost}")
    if cost.discount > 0:
        lines.append(f"Combined Discount: -${cost.discount}")
    lines.append(f"Total: ${cost.total}")

    if mode == "rich":
        _console.print(Panel.fit("\n".join(lines), title="💳 Rental Cost", border_style="blue"))
    else:
        for line in lines:
            print(line)


def print_payments(payments: List[Any]) -> None:
    mode = get_output_mode()

    if not payments:
        print("No invoices.")
        return

    if mode == "json":
        _print_json([p.to_dict() for p in payments])
    elif mode == "rich":
        table = Table(title="🧾 Invoices", header_style="bold cyan")
        table.add_column("ID", style="magenta", no_wrap=True)
        table.add_column("Book", style="white")
        table.add_column("Type")
        table.add_column("Method")
        table.add_column("Amount", justify="right", style="green")
        for p in payments:
            table.add_row(str(p.id), p.book_title or "-", p.type.value, p.payment_method.value, f"${p.amount}")
        _console.print(table)
    else:
        for p in payments:
            print(f"{p.id} - {p.type.value} {p.book_title}: ${p.amount} ({p.payment_method.value})")


def print_stats_result(stats: Dict[str, Any]) -> None:
    """Print statistics in the current output mode."""
    mode = get_output_mode()

    if not stats:
        print("No statistics available.")
        return

    labels = {
        "total_books": "Total Books",
        "unique_authors": "Unique Authors",
        "active_rentals": "Active Rentals",
        "returned_rentals": "Returned Rentals",
        "total_sales": "Total Sales",
        "sales_revenue": "Sales Revenue",
        "rental_revenue": "Rental Revenue",
    }

    if mode == "json":
        _print_json(stats)
    elif mode == "rich":
        content = "\n".join(f"[bold]{label}:[/] {stats.get(key, 0)}" for key, label in labels.items())
        _console.print(Panel.fit(content, title="📊 Stats", border_style="blue"))
    else:
        for key, label in labels.items():
            print(f"{label}: {stats.get(key, 0)}")


def print_config(config: Any) -> None:
    mode = get_output_mode()

    if mode == "json":
        _print_json(config.to_dict())
        return

    lines = [
        f"Days 31-60: ${config.tier_one_rate_per_day} / day",
        f"After 60 Days: ${config.tier_two_rate_per_day} / day",
    ]
    if mode == "rich":
        _console.print(Panel.fit("\n".join(lines), title="⚙️ Rental Config", border_style="blue"))
    else:
        for line in lines:
            print(line)
