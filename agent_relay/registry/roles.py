"""角色表：向导第三步的可选角色，以及各角色追加到系统提示的内容。"""

from __future__ import annotations

from agent_relay.models.agent import RoleDefinition

ROLE_DEFINITIONS: dict[str, RoleDefinition] = {
    "builder": RoleDefinition(
        role_id="builder",
        name="Builder",
        emoji="🔨",
        description="Build and create code, implement features",
        document_path=".roles/builder.md",
        system_prompt_addition=(
            "**Role: Builder**\n"
            "Your primary focus is building and creating code. You should:\n"
            "- Implement new features and functionality\n"
            "- Write clean, well-structured code\n"
            "- Follow the project's coding standards\n"
            "- Consider maintainability and scalability\n"
        ),
    ),
    "tester": RoleDefinition(
        role_id="tester",
        name="Tester",
        emoji="🧪",
        description="Test code, ensure quality, find bugs",
        document_path=".roles/tester.md",
        system_prompt_addition=(
            "**Role: Tester**\n"
            "Your primary focus is testing and quality assurance. You should:\n"
            "- Write unit, integration and e2e tests\n"
            "- Identify bugs and edge cases\n"
            "- Ensure proper error handling\n"
        ),
    ),
    "investigator": RoleDefinition(
        role_id="investigator",
        name="Investigator",
        emoji="🔍",
        description="Investigate issues, analyze systems, security",
        document_path=".roles/investigator.md",
        system_prompt_addition=(
            "**Role: Investigator**\n"
            "Your primary focus is investigation and analysis. You should:\n"
            "- Investigate security vulnerabilities\n"
            "- Debug complex issues and perform root cause analysis\n"
            "- Document findings and recommendations\n"
        ),
    ),
    "architect": RoleDefinition(
        role_id="architect",
        name="Architect",
        emoji="🏗️",
        description="Design systems, plan architecture",
        document_path=".roles/architect.md",
        system_prompt_addition=(
            "**Role: Architect**\n"
            "Your primary focus is system design and architecture. You should:\n"
            "- Design scalable, maintainable systems\n"
            "- Plan implementation strategies and make technology decisions\n"
            "- Weigh trade-offs explicitly\n"
        ),
    ),
    "reviewer": RoleDefinition(
        role_id="reviewer",
        name="Reviewer",
        emoji="👁️",
        description="Review code, provide feedback",
        document_path=".roles/reviewer.md",
        system_prompt_addition=(
            "**Role: Reviewer**\n"
            "Your primary focus is code review and feedback. You should:\n"
            "- Review code for quality and standards\n"
            "- Identify potential issues and suggest improvements\n"
            "- Provide constructive feedback\n"
        ),
    ),
}


def get_role(role_id: str | None) -> RoleDefinition | None:
    if not role_id:
        return None
    return ROLE_DEFINITIONS.get(role_id)
