"""Construction of the project type registry."""

from phase_orchestrator.core.workflow import ProjectTypeRegistry
from phase_orchestrator.projects.breakdown import BREAKDOWN
from phase_orchestrator.projects.design import DESIGN
from phase_orchestrator.projects.exploration import EXPLORATION
from phase_orchestrator.projects.standard import STANDARD


def default_registry() -> ProjectTypeRegistry:
    registry = ProjectTypeRegistry(default=STANDARD.name)
    for project_type in (STANDARD, EXPLORATION, DESIGN, BREAKDOWN):
        registry.register(project_type)
    return registry
