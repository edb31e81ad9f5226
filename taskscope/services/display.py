from typing import Dict, List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from taskscope.models import AnalysisStatus, CaptureSession, CaptureStatus, MonitorInfo, Task


class TerminalDisplay:
    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def show_monitors(self, monitors: List[MonitorInfo]):
        if not monitors:
            self.console.print("[yellow]No monitors found[/yellow]")
            return
        table = Table(title="Monitors")
        table.add_column("ID", justify="right", style="cyan")
        table.add_column("Name", style="green")
        table.add_column("Position", justify="right")
        table.add_column("Size", justify="right")
        table.add_column("Primary", justify="center", style="yellow")
        for monitor in monitors:
            table.add_row(
                str(monitor.id),
                monitor.name,
                f"{monitor.x},{monitor.y}",
                f"{monitor.width}x{monitor.height}",
                "yes" if monitor.is_primary else "",
            )
        self.console.print(table)

    def show_sessions(self, sessions: List[CaptureSession], title: str = "Capture Sessions"):
        if not sessions:
            self.console.print("[yellow]No sessions found[/yellow]")
            return
        table = Table(title=title)
        table.add_column("ID", justify="right", style="cyan")
        table.add_column("Started", style="green")
        table.add_column("Ended")
        table.add_column("Title / Description")
        table.add_column("Shots", justify="right")
        table.add_column("Pending", justify="right", style="yellow")
        for session in sessions:
            table.add_row(
                str(session.id),
                session.started_at,
                session.ended_at or "[bold green]running[/bold green]",
                session.title or session.description or "",
                str(session.screenshot_count),
                str(session.unanalyzed_count),
            )
        self.console.print(table)

    def show_tasks(self, tasks: List[Task], title: str = "Tasks"):
        if not tasks:
            self.console.print("[yellow]No tasks found[/yellow]")
            return
        table = Table(title=title)
        table.add_column("ID", justify="right", style="cyan")
        table.add_column("Started", style="green")
        table.add_column("Category", style="blue")
        table.add_column("Task")
        for task in tasks:
            text = Text(task.title, style="bold")
            if task.description:
                text.append(f"\n{task.description}", style="dim")
            table.add_row(str(task.id), task.started_at, task.category or "", text)
        self.console.print(table)

    def show_status(self, capture: CaptureStatus, analysis: AnalysisStatus):
        body = Text()
        body.append("Capture: ", style="bold")
        body.append("active" if capture.active else "idle", style="green" if capture.active else "dim")
        body.append(f"\nInterval: {capture.interval_seconds:g}s")
        body.append(f"\nMonitor mode: {capture.monitor_mode}")
        body.append(f"\nScreenshots saved: {capture.count}")
        body.append("\nAnalysis: ", style="bold")
        if analysis.analyzing:
            body.append(f"running (session {analysis.session_id})", style="yellow")
        else:
            body.append("idle", style="dim")
        self.console.print(Panel(body, title="taskscope status", expand=False))

    def show_settings(self, values: Dict[str, Optional[str]]):
        table = Table(title="Settings")
        table.add_column("Key", style="cyan")
        table.add_column("Value", style="green")
        for key, value in values.items():
            if key == "ai_api_key" and value:
                value = value[:4] + "..."
            table.add_row(key, value if value is not None else "[dim]default[/dim]")
        self.console.print(table)
