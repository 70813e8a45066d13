"""
Projects and their collaborators.

Membership and task-index changes are single atomic updates ($addToSet,
$pull, conditional $push) so concurrent requests on the same project do not
overwrite each other.
"""
import logging

from pymongo import ReturnDocument

from database import create_document, find_by_id, get_documents, now, to_object_id
from errors import Conflict, NotFound
from permissions import Action, require
from schemas import Project, ProjectCreate, ProjectUpdate, present_fields

logger = logging.getLogger(__name__)

PUBLIC_USER_FIELDS = {"name": 1, "email": 1}


def get_project(db, project_id) -> dict:
    return find_by_id(db, "project", project_id, "Project")


def create_project(db, creator_id, fields: ProjectCreate) -> dict:
    project = Project(**fields.model_dump(), creator=creator_id)
    project_id = create_document(db, "project", project)
    logger.info("Project %s created by %s", project_id, creator_id)
    return db["project"].find_one({"_id": project_id})


def list_projects_visible_to(db, user_id) -> list:
    return get_documents(
        db,
        "project",
        {"$or": [{"creator": user_id}, {"collaborators": user_id}]},
        projection={"tasks": 0},
    )


def get_project_detail(db, project_id, actor_id) -> dict:
    project = get_project(db, project_id)
    require(actor_id, project, Action.VIEW)

    users = db["user"]
    collaborators = []
    for collaborator_id in project.get("collaborators", []):
        user = users.find_one({"_id": collaborator_id}, PUBLIC_USER_FIELDS)
        if user:
            collaborators.append(user)

    tasks = {t["_id"]: t for t in db["task"].find({"_id": {"$in": project.get("tasks", [])}})}
    ordered = []
    for task_id in project.get("tasks", []):
        task = tasks.get(task_id)
        if task is None:
            continue
        if task.get("complete"):
            task["complete"] = users.find_one({"_id": task["complete"]}, {"name": 1})
        ordered.append(task)

    project["collaborators"] = collaborators
    project["tasks"] = ordered
    return project


def update_project_fields(db, project_id, actor_id, update: ProjectUpdate) -> dict:
    project = get_project(db, project_id)
    require(actor_id, project, Action.EDIT_PROJECT_FIELDS)

    changes = present_fields(update)
    if not changes:
        return project
    changes["updated_at"] = now()
    logger.info("Project %s updated: %s", project["_id"], sorted(changes))
    return db["project"].find_one_and_update(
        {"_id": project["_id"]},
        {"$set": changes},
        return_document=ReturnDocument.AFTER,
    )


def search_collaborator(db, email: str) -> dict:
    user = db["user"].find_one({"email": email}, PUBLIC_USER_FIELDS)
    if not user:
        raise NotFound("User not found")
    return user


def add_collaborator(db, project_id, actor_id, email: str) -> dict:
    project = get_project(db, project_id)
    require(actor_id, project, Action.MANAGE_COLLABORATORS)

    user = search_collaborator(db, email)
    if user["_id"] == project["creator"]:
        raise Conflict("The project creator cannot be a collaborator")

    result = db["project"].update_one(
        {"_id": project["_id"], "collaborators": {"$ne": user["_id"]}},
        {"$push": {"collaborators": user["_id"]}, "$set": {"updated_at": now()}},
    )
    if result.matched_count == 0:
        if db["project"].count_documents({"_id": project["_id"]}) == 0:
            raise NotFound("Project not found")
        raise Conflict("The user is already a collaborator")

    logger.info("User %s added to project %s", user["_id"], project["_id"])
    return user


def remove_collaborator(db, project_id, actor_id, collaborator_id) -> None:
    project = get_project(db, project_id)
    require(actor_id, project, Action.MANAGE_COLLABORATORS)

    try:
        member_id = to_object_id(collaborator_id, "Collaborator")
    except NotFound:
        # nothing with a malformed id can be a member
        return
    result = db["project"].update_one(
        {"_id": project["_id"]},
        {"$pull": {"collaborators": member_id}},
    )
    if result.modified_count:
        logger.info("User %s removed from project %s", member_id, project["_id"])


def delete_project(db, project_id, actor_id) -> None:
    """Delete a project and every task that belongs to it."""
    project = get_project(db, project_id)
    require(actor_id, project, Action.DELETE_PROJECT)

    # project before tasks; create_task rolls back when its project is gone
    db["project"].delete_one({"_id": project["_id"]})
    removed = db["task"].delete_many({"project": project["_id"]})
    logger.info("Project %s deleted with %d tasks", project["_id"], removed.deleted_count)
