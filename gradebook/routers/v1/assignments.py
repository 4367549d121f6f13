# gradebook/routers/v1/assignments.py
from typing import Annotated, List
from fastapi import APIRouter, Depends, status
from gradebook.core.deps import get_gradebook
from gradebook.core.errors import StoreError
from gradebook.routers.v1.errors import http_error, not_found
from gradebook.schemas.entities import Assignment, Grade
from gradebook.schemas.requests import AssignmentCreate
from gradebook.services.gradebook_service import GradebookService

router = APIRouter()
GradebookDep = Annotated[GradebookService, Depends(get_gradebook)]

@router.post("/assignments", status_code=status.HTTP_201_CREATED, response_model=Assignment)
async def create_assignment(body: AssignmentCreate, gradebook: GradebookDep):
    try:
        return await gradebook.add_assignment(body.model_dump(exclude_none=True))
    except StoreError as e:
        raise http_error(e)

@router.get("/assignments", response_model=List[Assignment])
async def list_assignments(gradebook: GradebookDep):
    try:
        return await gradebook.list_assignments()
    except StoreError as e:
        raise http_error(e)

@router.get("/assignments/{assignment_id}", response_model=Assignment)
async def get_assignment(assignment_id: str, gradebook: GradebookDep):
    try:
        assignment = await gradebook.get_assignment(assignment_id)
    except StoreError as e:
        raise http_error(e)
    if assignment is None:
        raise not_found("Assignment", assignment_id)
    return assignment

@router.get("/assignments/{assignment_id}/grades", response_model=List[Grade])
async def assignment_grades(assignment_id: str, gradebook: GradebookDep):
    try:
        return await gradebook.grades_for_assignment(assignment_id)
    except StoreError as e:
        raise http_error(e)
