from typing import Optional, Sequence

from rich.console import Console
from rich.table import Table


def render_training_report(history: Sequence, console: Optional[Console] = None) -> Table:
    """
    Печатает таблицу по эпохам обучения (EpochStats) и возвращает ее.
    """
    console = console or Console()
    table = Table(title="Perceptron training")
    table.add_column("Epoch", justify="right", style="cyan")
    table.add_column("Loss", justify="right")
    table.add_column("Loss / example", justify="right")
    table.add_column("Mistakes", justify="right", style="red")
    table.add_column("Mean steps", justify="right", style="green")

    for stats in history:
        table.add_row(
            str(stats.epoch),
            f"{stats.loss:.1f}",
            f"{stats.normalized_loss:.4f}",
            f"{stats.num_mistakes}/{stats.num_examples}",
            f"{stats.mean_subgradient_steps:.2f}",
        )

    console.print(table)
    return table
