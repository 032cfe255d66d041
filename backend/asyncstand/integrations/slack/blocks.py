from __future__ import annotations

from typing import Any, Optional

SUBMIT_ACTION_ID = "submit_standup_response"
SKIP_ACTION_ID = "skip_standup"
MODAL_CALLBACK_PREFIX = "standup_response_"
QUESTION_BLOCK_PREFIX = "question_"
ANSWER_ACTION_ID = "answer"


def _section(text: str) -> dict[str, Any]:
    return {"type": "section", "text": {"type": "mrkdwn", "text": text}}


def format_questions(questions: list[str]) -> str:
    return "\n".join(f"{i + 1}. {q}" for i, q in enumerate(questions))


def standup_prompt_blocks(
    *,
    instance_id: str,
    team_name: str,
    target_date: str,
    questions: list[str],
    timeout_hours: int,
    magic_link: Optional[str] = None,
) -> list[dict[str, Any]]:
    blocks: list[dict[str, Any]] = [
        {"type": "header", "text": {"type": "plain_text", "text": f"Standup for {team_name}"}},
        _section(f"*{target_date}*. Please answer within {timeout_hours}h.\n\n{format_questions(questions)}"),
        _section("Reply with a numbered list, or use the button below."),
        {
            "type": "actions",
            "block_id": f"standup_actions_{instance_id}",
            "elements": [
                {
                    "type": "button",
                    "action_id": SUBMIT_ACTION_ID,
                    "style": "primary",
                    "text": {"type": "plain_text", "text": "Submit response"},
                    "value": instance_id,
                },
                {
                    "type": "button",
                    "action_id": SKIP_ACTION_ID,
                    "text": {"type": "plain_text", "text": "Skip today"},
                    "value": instance_id,
                },
            ],
        },
    ]
    if magic_link:
        blocks.append(
            {"type": "context", "elements": [{"type": "mrkdwn", "text": f"<{magic_link}|Answer in the browser>"}]}
        )
    return blocks


def response_modal(*, instance_id: str, team_name: str, questions: list[str]) -> dict[str, Any]:
    blocks = [
        {
            "type": "input",
            "block_id": f"{QUESTION_BLOCK_PREFIX}{index}",
            "optional": True,
            "label": {"type": "plain_text", "text": question[:150]},
            "element": {"type": "plain_text_input", "action_id": ANSWER_ACTION_ID, "multiline": True},
        }
        for index, question in enumerate(questions)
    ]
    return {
        "type": "modal",
        "callback_id": f"{MODAL_CALLBACK_PREFIX}{instance_id}",
        "title": {"type": "plain_text", "text": "Daily standup"},
        "submit": {"type": "plain_text", "text": "Submit"},
        "close": {"type": "plain_text", "text": "Cancel"},
        "private_metadata": instance_id,
        "blocks": [_section(f"*{team_name}*")] + blocks,
    }


def extract_modal_answers(values: dict[str, Any], question_count: int) -> list[dict[str, Any]]:
    """view.state.values -> [{question_index, text}] for the non-empty inputs."""
    answers = []
    for index in range(question_count):
        block = values.get(f"{QUESTION_BLOCK_PREFIX}{index}") or {}
        text = ((block.get(ANSWER_ACTION_ID) or {}).get("value") or "").strip()
        if text:
            answers.append({"question_index": index, "text": text})
    return answers


def digest_blocks(
    *,
    team_name: str,
    target_date: str,
    questions: list[str],
    members: list[dict[str, Any]],
    missing_names: list[str],
) -> list[dict[str, Any]]:
    blocks: list[dict[str, Any]] = [
        {"type": "header", "text": {"type": "plain_text", "text": f"{team_name} standup, {target_date}"}},
    ]
    for member in members:
        by_index = {a["question_index"]: a["text"] for a in member["answers"]}
        lines = [f"*{member['member_name']}*"]
        for index, question in enumerate(questions):
            answer = by_index.get(index)
            if answer:
                lines.append(f"_{question}_\n{answer}")
        blocks.append(_section("\n".join(lines)))
        blocks.append({"type": "divider"})
    if missing_names:
        blocks.append(
            {"type": "context", "elements": [{"type": "mrkdwn", "text": "No response: " + ", ".join(missing_names)}]}
        )
    return blocks


HELP_TEXT = (
    "*Standup commands*\n"
    "`/standup status` shows your open standups\n"
    "`/standup submit` gets a link to answer in the browser\n"
    "`/standup skip [reason]` skips today's standup\n"
    "`/standup help` shows this message"
)


REMINDER_TEXT = {
    "halfway": "Friendly reminder: the {team} standup is still waiting for your update.",
    "late": "The {team} standup closes soon. Share your update when you can.",
    "final": "Last call: the {team} standup summary goes out in {minutes} minutes.",
}


def reminder_text(stage: str, team_name: str, minutes_left: int) -> str:
    return REMINDER_TEXT[stage].format(team=team_name, minutes=minutes_left)


def reminder_blocks(
    *,
    instance_id: str,
    stage: str,
    team_name: str,
    questions: list[str],
    missing_questions: list[int],
    minutes_left: int,
    magic_link: Optional[str] = None,
) -> list[dict[str, Any]]:
    pending = [f"{i + 1}. {questions[i]}" for i in missing_questions if i < len(questions)]
    blocks: list[dict[str, Any]] = [
        _section(reminder_text(stage, team_name, minutes_left)),
        _section("Still open:\n" + "\n".join(pending)),
        {
            "type": "actions",
            "block_id": f"standup_reminder_{instance_id}",
            "elements": [
                {
                    "type": "button",
                    "action_id": SUBMIT_ACTION_ID,
                    "style": "primary",
                    "text": {"type": "plain_text", "text": "Submit response"},
                    "value": instance_id,
                }
            ],
        },
    ]
    if magic_link:
        blocks.append(
            {"type": "context", "elements": [{"type": "mrkdwn", "text": f"<{magic_link}|Answer in the browser>"}]}
        )
    return blocks
