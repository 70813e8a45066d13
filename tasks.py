"""
Task lifecycle inside a project.

A task exists if and only if its id is in the parent project's `tasks` list.
Creation and deletion write both documents and undo the first write when the
second one fails.
"""
import logging

from pymongo import ReturnDocument
from pymongo.errors import PyMongoError

from database import create_document, find_by_id, now
from errors import NotFound, Unexpected
from permissions import Action, require
from projects import get_project
from schemas import Task, TaskCreate, TaskUpdate, present_fields

logger = logging.getLogger(__name__)

TOGGLE_ATTEMPTS = 5


def _task_and_project(db, task_id) -> tuple:
    task = find_by_id(db, "task", task_id, "Task")
    project = db["project"].find_one({"_id": task["project"]})
    if not project:
        logger.error("Task %s points at missing project %s", task["_id"], task["project"])
        raise NotFound("Project not found")
    return task, project


def _current(db, project: dict) -> dict:
    """Reread the project for event payloads, keeping the old copy if it is gone."""
    return db["project"].find_one({"_id": project["_id"]}) or project


def create_task(db, project_id, actor_id, fields: TaskCreate) -> dict:
    project = get_project(db, project_id)
    require(actor_id, project, Action.CREATE_TASK, "You are not allowed to add tasks")

    data = fields.model_dump(exclude={"project"})
    task_id = create_document(db, "task", Task(**data, project=project["_id"]))
    try:
        result = db["project"].update_one(
            {"_id": project["_id"]},
            {"$addToSet": {"tasks": task_id}},
        )
    except PyMongoError:
        db["task"].delete_one({"_id": task_id})
        raise
    if result.matched_count == 0:
        db["task"].delete_one({"_id": task_id})
        raise NotFound("Project not found")

    logger.info("Task %s created in project %s", task_id, project["_id"])
    task = db["task"].find_one({"_id": task_id})
    task["project"] = _current(db, project)
    return task


def get_task(db, task_id, actor_id) -> dict:
    task, project = _task_and_project(db, task_id)
    require(actor_id, project, Action.VIEW)
    task["project"] = project
    return task


def update_task_fields(db, task_id, actor_id, update: TaskUpdate) -> dict:
    task, project = _task_and_project(db, task_id)
    require(actor_id, project, Action.EDIT_TASK_FIELDS)

    changes = present_fields(update)
    if changes:
        changes["updated_at"] = now()
        task = db["task"].find_one_and_update(
            {"_id": task["_id"]},
            {"$set": changes},
            return_document=ReturnDocument.AFTER,
        )
        if task is None:
            raise NotFound("Task not found")
        logger.info("Task %s updated: %s", task["_id"], sorted(changes))
    task["project"] = project
    return task


def delete_task(db, task_id, actor_id) -> dict:
    task, project = _task_and_project(db, task_id)
    require(actor_id, project, Action.DELETE_TASK)

    db["project"].update_one({"_id": project["_id"]}, {"$pull": {"tasks": task["_id"]}})
    try:
        db["task"].delete_one({"_id": task["_id"]})
    except PyMongoError:
        logger.exception("Deleting task %s failed, restoring it on project %s", task["_id"], project["_id"])
        db["project"].update_one({"_id": project["_id"]}, {"$addToSet": {"tasks": task["_id"]}})
        raise

    logger.info("Task %s deleted from project %s", task["_id"], project["_id"])
    return {"_id": task["_id"], "project": _current(db, project)}


def toggle_task_state(db, task_id, actor_id) -> dict:
    """Flip the task state and record who changed it, in either direction."""
    task, project = _task_and_project(db, task_id)
    require(actor_id, project, Action.TOGGLE_TASK_STATE)

    for _ in range(TOGGLE_ATTEMPTS):
        current = bool(task.get("state"))
        updated = db["task"].find_one_and_update(
            {"_id": task["_id"], "state": current},
            {"$set": {"state": not current, "complete": actor_id, "updated_at": now()}},
            return_document=ReturnDocument.AFTER,
        )
        if updated is not None:
            break
        # someone else toggled in between; reread and flip their result
        task = find_by_id(db, "task", task["_id"], "Task")
    else:
        logger.error("Could not toggle task %s after %d attempts", task["_id"], TOGGLE_ATTEMPTS)
        raise Unexpected("The task is changing too quickly, try again")

    logger.info("Task %s set to %s by %s", updated["_id"], updated["state"], actor_id)
    updated["project"] = project
    updated["complete"] = db["user"].find_one({"_id": actor_id}, {"name": 1, "email": 1})
    return updated
