"""Interactive console for the appointment coordinator."""

import asyncio
import logging
import shlex

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from appointment_coordinator.config import load_settings
from appointment_coordinator.coordinator import AppointmentCoordinator, EngineEvent
from appointment_coordinator.errors import CoordinatorError
from appointment_coordinator.state_machine import AppointmentStatus

console = Console()

HELP = """[bold]Commands[/bold]
  init <id> [date] [time]                  register an appointment (date YYYY-MM-DD, time HH:MM)
  status <id> <status> <actor> [reason]    change status (actor: provider, patient, system)
  respond <id> confirm|decline|reschedule [reason]
  reschedule <id> <date> <time>            provider reschedules the appointment
  history <id>                             status history
  dashboard                                summary, attention list and reminder counts
  help | quit"""


def show_history(coordinator: AppointmentCoordinator, appointment_id: str) -> None:
    table = Table(title=f"History for {appointment_id}")
    for column in ("#", "When", "From", "To", "By", "Reason"):
        table.add_column(column)
    for record in coordinator.get_appointment_status_history(appointment_id):
        table.add_row(
            str(record.sequence),
            record.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            record.previous_status.display_name,
            record.new_status.display_name,
            record.actor.value,
            record.reason or "",
        )
    console.print(table)
    status = coordinator.get_appointment_status(appointment_id)
    console.print(f"Current status: [bold]{status.display_name}[/bold]")


def show_dashboard(coordinator: AppointmentCoordinator) -> None:
    view = coordinator.get_dashboard_view()

    summary = Table(title="Appointments by status")
    summary.add_column("Status")
    summary.add_column("Count", justify="right")
    for status in AppointmentStatus:
        summary.add_row(status.display_name, str(view.status_summary[status]))
    console.print(summary)

    if view.needing_attention:
        console.print("[bold yellow]Needs attention:[/bold yellow]")
        for record in view.needing_attention:
            console.print(f"  {record.appointment_id}: {record.new_status.display_name}"
                          f"{f' ({record.reason})' if record.reason else ''}")

    stats = view.reminder_statistics
    console.print(
        f"Reminders: {stats.total} total, {stats.pending} pending, {stats.sent} sent, "
        f"{stats.failed} failed, {stats.cancelled} cancelled"
    )


def print_event(event: EngineEvent) -> None:
    if event.notice is not None:
        console.print(f"[magenta]Notice to {event.notice.audience.value}:[/magenta] "
                      f"{event.notice.title} - {event.notice.message}")
    elif event.reminder is not None:
        console.print(f"[magenta]{event.kind.replace('_', ' ')}:[/magenta] "
                      f"{event.appointment_id} ({event.reminder.label} via {event.reminder.channel})")


async def run_command(coordinator: AppointmentCoordinator, args: list[str]) -> None:
    command, rest = args[0].lower(), args[1:]

    if command == "init" and rest:
        schedule = await coordinator.initialize(rest[0], *rest[1:3])
        plan = coordinator.get_reminder_plan(schedule.appointment_id)
        console.print(f"Registered {schedule.appointment_id}"
                      f"{f' with {len(plan.entries)} reminders' if plan else ''}")
    elif command == "status" and len(rest) >= 3:
        result = await coordinator.update_status(rest[0], rest[1], rest[2], " ".join(rest[3:]) or None)
        report(result)
    elif command == "respond" and len(rest) >= 2:
        result = await coordinator.process_patient_response(rest[0], rest[1], " ".join(rest[2:]) or None)
        report(result)
    elif command == "reschedule" and len(rest) == 3:
        result = await coordinator.update_status(
            rest[0], AppointmentStatus.RESCHEDULED, "provider",
            reschedule_details={"new_date": rest[1], "new_time": rest[2]},
        )
        report(result)
    elif command == "history" and rest:
        show_history(coordinator, rest[0])
    elif command == "dashboard":
        show_dashboard(coordinator)
    else:
        console.print(HELP)


def report(result) -> None:
    if result.ok:
        console.print(f"[green]{result.appointment_id} is now {result.status.display_name}[/green]")
    else:
        console.print(f"[bold red]Rejected:[/bold red] {result.error}")


async def main_async() -> None:
    settings = load_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )

    coordinator = AppointmentCoordinator.from_settings(settings)
    coordinator.subscribe(print_event)
    recovered = await coordinator.start()

    console.print("[bold blue]Appointment coordinator[/bold blue]")
    console.print(f"Database: {settings.db_path} - {recovered} reminders re-armed. Type 'help' for commands.\n")

    try:
        while True:
            try:
                line = await asyncio.to_thread(console.input, "[bold green]>[/bold green] ")
            except (EOFError, KeyboardInterrupt):
                break

            line = line.strip()
            if not line:
                continue
            if line.lower() in ("quit", "exit"):
                break

            try:
                await run_command(coordinator, shlex.split(line))
            except (CoordinatorError, ValueError) as e:
                console.print(f"[bold red]Error:[/bold red] {e}\n")
    finally:
        await coordinator.shutdown()
        console.print("[bold blue]Goodbye![/bold blue]")


def main():
    asyncio.run(main_async())


if __name__ == "__main__":
    main()
