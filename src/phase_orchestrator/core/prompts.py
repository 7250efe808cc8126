"""Guidance text shown after entering a state."""

from phase_orchestrator.db.models import Project

GUIDANCE = {
    # standard
    "PlanningActive": "Gather context and produce a task_list output, then approve it and run 'po complete'.",
    "ImplementationPlanning": "Break the work into tasks with 'po task add', then run 'po advance' to approve them.",
    "ImplementationExecuting": "Work the tasks. Mark each completed or abandoned, then run 'po complete'.",
    "ReviewActive": "Add a review output with an assessment of pass or fail, approve it, then run 'po complete'.",
    "FinalizeDocumentation": "Update documentation affected by the change, then run 'po advance'.",
    "FinalizeChecks": "Run the final checks, then run 'po advance'.",
    "FinalizeDelete": "Run 'po complete' to delete the project state.",
    # exploration
    "Summarizing": "Write summary outputs and approve each one, then run 'po complete'.",
    # exploration and design
    "Finalizing": "Add finalization tasks, complete them, then run 'po complete finalization'.",
    # breakdown
    "Discovery": "Enable discovery to gather context first, or run 'po skip discovery'.",
    "Publishing": "Run 'po publish' to create an issue for each approved work unit.",
    "Completed": "The project is complete.",
}

ACTIVE_GUIDANCE = {
    "exploration": "Research the topic with tasks. When every task is resolved, run 'po advance'.",
    "design": "Plan documents as tasks, draft them as outputs, then run 'po complete'.",
    "breakdown": "Decompose the work into units with dependencies, then set decomposition_complete true.",
}


def render(state: str, project: Project) -> str:
    """Render the guidance for ``state``."""
    if state == "Active":
        guidance = ACTIVE_GUIDANCE.get(project.type, "")
    else:
        guidance = GUIDANCE.get(state, "")

    lines = [f"[{project.name}] {project.type} project is now in {state}."]
    for phase in project.phases.values():
        if not phase.enabled:
            continue
        open_tasks = len(phase.unresolved_tasks())
        if phase.tasks:
            lines.append(f"  {phase.name}: {phase.status}, {open_tasks}/{len(phase.tasks)} tasks open")
        else:
            lines.append(f"  {phase.name}: {phase.status}")
    if guidance:
        lines.append(guidance)
    return "\n".join(lines)
