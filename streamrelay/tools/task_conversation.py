"""task_conversation tool: every job attached to a conversation."""

from streamrelay.services import TaskServices


async def task_conversation(services: TaskServices, conversation_id: str, user_id: str) -> dict:
    records = await services.store.list_for_conversation(conversation_id, owner_id=user_id)
    return {"tasks": [record.to_dict() for record in records]}
