import json
import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

import anyio
from fastapi import BackgroundTasks, Depends, FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError

import database
import projects
import tasks
import users
from database import get_db, to_str_id
from errors import Unexpected
from realtime import Event, rooms
from schemas import (
    CollaboratorRemove,
    EmailRequest,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    NewPasswordRequest,
    ProjectCreate,
    ProjectUpdate,
    RegisterRequest,
    TaskCreate,
    TaskUpdate,
)
from security import get_current_user

logging.basicConfig(
    level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

FRONTEND_URL = os.getenv("FRONTEND_URL")


@asynccontextmanager
async def app_lifespan(app: FastAPI):
    logger.info("Starting application...")
    if database.db is not None:
        try:
            database.ensure_indexes(database.db)
        except PyMongoError:
            logger.exception("Could not create database indexes")
    else:
        logger.warning("DATABASE_URL/DATABASE_NAME not set, requests needing the database will fail")
    yield
    logger.info("Application shutdown complete")


app = FastAPI(
    title="Project Tracker API",
    description="Projects, collaborators and tasks with live updates per project",
    version="1.0.0",
    lifespan=app_lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[FRONTEND_URL] if FRONTEND_URL else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(PyMongoError)
async def store_error_handler(request: Request, exc: PyMongoError):
    logger.exception("Database error on %s %s", request.method, request.url.path, exc_info=exc)
    error = Unexpected()
    return JSONResponse(status_code=error.status_code, content={"detail": error.detail})


def broadcast(project_id, event: Event, payload: dict):
    """Publish from a sync handler (worker thread) onto the event loop."""
    try:
        anyio.from_thread.run(rooms.publish, str(project_id), event, payload)
    except Exception:
        # the write is already stored; a lost event is only logged
        logger.exception("Could not publish %s for project %s", event.value, project_id)


@app.get("/")
def read_root():
    return {"message": "Project Tracker API"}


# User routes
@app.post("/api/users", response_model=MessageResponse)
def register(data: RegisterRequest, background_tasks: BackgroundTasks, db=Depends(get_db)):
    users.register(db, data, background_tasks)
    return MessageResponse(msg="User created, check your email to confirm your account")


@app.post("/api/users/login", response_model=LoginResponse)
def login(data: LoginRequest, db=Depends(get_db)):
    return users.login(db, data)


@app.get("/api/users/confirm/{token}", response_model=MessageResponse)
def confirm(token: str, db=Depends(get_db)):
    users.confirm(db, token)
    return MessageResponse(msg="Account confirmed")


@app.post("/api/users/forgot-password", response_model=MessageResponse)
def forgot_password(data: EmailRequest, background_tasks: BackgroundTasks, db=Depends(get_db)):
    users.forgot_password(db, data.email, background_tasks)
    return MessageResponse(msg="We sent you an email with the instructions")


@app.get("/api/users/forgot-password/{token}", response_model=MessageResponse)
def check_token(token: str, db=Depends(get_db)):
    users.check_token(db, token)
    return MessageResponse(msg="Token is valid")


@app.post("/api/users/forgot-password/{token}", response_model=MessageResponse)
def new_password(token: str, data: NewPasswordRequest, db=Depends(get_db)):
    users.new_password(db, token, data.password)
    return MessageResponse(msg="Password updated")


@app.get("/api/users/profile")
def profile(current=Depends(get_current_user)):
    return to_str_id(current)


# Project routes
@app.get("/api/projects")
def list_projects(current=Depends(get_current_user), db=Depends(get_db)):
    return to_str_id(projects.list_projects_visible_to(db, current["_id"]))


@app.post("/api/projects")
def create_project(payload: ProjectCreate, current=Depends(get_current_user), db=Depends(get_db)):
    return to_str_id(projects.create_project(db, current["_id"], payload))


@app.post("/api/projects/collaborators")
def search_collaborator(data: EmailRequest, current=Depends(get_current_user), db=Depends(get_db)):
    return to_str_id(projects.search_collaborator(db, data.email))


@app.post("/api/projects/collaborators/{project_id}")
def add_collaborator(project_id: str, data: EmailRequest, current=Depends(get_current_user), db=Depends(get_db)):
    user = projects.add_collaborator(db, project_id, current["_id"], data.email)
    return {"msg": "Collaborator added", "collaborator": to_str_id(user)}


@app.post("/api/projects/delete-collaborator/{project_id}", response_model=MessageResponse)
def remove_collaborator(project_id: str, data: CollaboratorRemove,
                        current=Depends(get_current_user), db=Depends(get_db)):
    projects.remove_collaborator(db, project_id, current["_id"], data.id)
    return MessageResponse(msg="Collaborator removed")


@app.get("/api/projects/{project_id}")
def get_project(project_id: str, current=Depends(get_current_user), db=Depends(get_db)):
    return to_str_id(projects.get_project_detail(db, project_id, current["_id"]))


@app.put("/api/projects/{project_id}")
def update_project(project_id: str, payload: ProjectUpdate,
                   current=Depends(get_current_user), db=Depends(get_db)):
    return to_str_id(projects.update_project_fields(db, project_id, current["_id"], payload))


@app.delete("/api/projects/{project_id}", response_model=MessageResponse)
def delete_project(project_id: str, current=Depends(get_current_user), db=Depends(get_db)):
    projects.delete_project(db, project_id, current["_id"])
    return MessageResponse(msg="Project deleted")


# Task routes
@app.post("/api/tasks")
def create_task(payload: TaskCreate, current=Depends(get_current_user), db=Depends(get_db)):
    task = tasks.create_task(db, payload.project, current["_id"], payload)
    broadcast(task["project"]["_id"], Event.TASK_CREATED, task)
    return to_str_id(task)


@app.get("/api/tasks/{task_id}")
def get_task(task_id: str, current=Depends(get_current_user), db=Depends(get_db)):
    return to_str_id(tasks.get_task(db, task_id, current["_id"]))


@app.put("/api/tasks/{task_id}")
def update_task(task_id: str, payload: TaskUpdate, current=Depends(get_current_user), db=Depends(get_db)):
    task = tasks.update_task_fields(db, task_id, current["_id"], payload)
    broadcast(task["project"]["_id"], Event.TASK_UPDATED, task)
    return to_str_id(task)


@app.delete("/api/tasks/{task_id}", response_model=MessageResponse)
def delete_task(task_id: str, current=Depends(get_current_user), db=Depends(get_db)):
    deleted = tasks.delete_task(db, task_id, current["_id"])
    broadcast(deleted["project"]["_id"], Event.TASK_DELETED, deleted)
    return MessageResponse(msg="Task deleted")


@app.post("/api/tasks/state/{task_id}")
def toggle_task_state(task_id: str, current=Depends(get_current_user), db=Depends(get_db)):
    task = tasks.toggle_task_state(db, task_id, current["_id"])
    broadcast(task["project"]["_id"], Event.TASK_COMPLETED, task)
    return to_str_id(task)


# Realtime rooms
async def serve_connection(websocket: WebSocket, project_id: Optional[str] = None):
    await websocket.accept()
    connection_id = rooms.connect(websocket)
    try:
        if project_id:
            rooms.join(connection_id, project_id)
            await websocket.send_json({"event": "joined", "project": project_id})
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
                action = message["action"]
                project = str(message["project"])
            except (ValueError, KeyError, TypeError):
                await websocket.send_json({"event": "error", "detail": "Expected {\"action\", \"project\"}"})
                continue
            if action == "join":
                rooms.join(connection_id, project)
                await websocket.send_json({"event": "joined", "project": project})
            elif action == "leave":
                rooms.leave(connection_id, project)
                await websocket.send_json({"event": "left", "project": project})
            else:
                await websocket.send_json({"event": "error", "detail": f"Unknown action {action!r}"})
    except WebSocketDisconnect:
        pass
    finally:
        rooms.disconnect(connection_id)


@app.websocket("/ws")
async def rooms_ws(websocket: WebSocket):
    await serve_connection(websocket)


@app.websocket("/ws/projects/{project_id}")
async def project_ws(websocket: WebSocket, project_id: str):
    await serve_connection(websocket, project_id)


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
