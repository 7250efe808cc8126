"""MCP prompt templates for driving a project through its phases."""

from phase_orchestrator.mcp.server import mcp


@mcp.prompt()
def plan_tasks(goal: str) -> str:
    """Generate a prompt to plan the current phase's tasks for a goal."""
    return (
        f"I need to accomplish the following goal:\n\n"
        f"{goal}\n\n"
        f"Use project_status to see which phase is active. Then break the goal into tasks:\n"
        f"1. Give each task a short, specific name\n"
        f"2. Describe what done looks like\n"
        f"3. List the IDs of tasks it depends on (IDs are 010, 020, ...)\n"
        f"4. Mark tasks that can proceed alongside others as parallel\n\n"
        f"Create them with add_task, then call dependency_order to check the plan has no cycles."
    )


@mcp.prompt()
def status_report() -> str:
    """Generate a prompt for a project status report."""
    return (
        "Please report on the active project.\n\n"
        "Use project_status and project_history, then provide:\n"
        "1. The current state and phase\n"
        "2. Tasks still open and who is assigned to them\n"
        "3. Outputs waiting for approval\n"
        "4. The events that can fire now, and what blocks the rest\n"
        "5. The next action to take"
    )


@mcp.prompt()
def review_phase(phase: str) -> str:
    """Generate a prompt to check whether a phase is ready to complete."""
    return (
        f"Check whether the '{phase}' phase is ready to complete.\n\n"
        f"Use list_tasks with phase='{phase}' and project_status to inspect its outputs.\n"
        f"Then provide:\n"
        f"1. Tasks that are not yet completed or abandoned\n"
        f"2. Outputs that still need approval\n"
        f"3. Whether complete_phase would succeed, and if not, why\n"
        f"Do not approve artifacts yourself; list them for a human to approve."
    )
