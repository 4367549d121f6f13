# gradebook/routers/v1/grades.py
from typing import Annotated
from fastapi import APIRouter, Depends, status
from gradebook.core.deps import get_gradebook
from gradebook.core.errors import StoreError
from gradebook.routers.v1.errors import http_error, not_found
from gradebook.schemas.entities import Grade
from gradebook.schemas.requests import GradeBatch, GradeCreate
from gradebook.services.gradebook_service import GradebookService

router = APIRouter()
GradebookDep = Annotated[GradebookService, Depends(get_gradebook)]

@router.post("/grades", status_code=status.HTTP_201_CREATED, response_model=Grade)
async def create_grade(body: GradeCreate, gradebook: GradebookDep):
    try:
        return await gradebook.add_grade(body.model_dump(exclude_none=True))
    except StoreError as e:
        raise http_error(e)

@router.post("/grades/batch", status_code=status.HTTP_201_CREATED)
async def record_grades(body: GradeBatch, gradebook: GradebookDep):
    try:
        ids = await gradebook.record_grades(g.model_dump(exclude_none=True) for g in body.grades)
    except StoreError as e:
        raise http_error(e)
    return {"ids": ids}

@router.get("/grades/{grade_id}", response_model=Grade)
async def get_grade(grade_id: str, gradebook: GradebookDep):
    try:
        grade = await gradebook.get_grade(grade_id)
    except StoreError as e:
        raise http_error(e)
    if grade is None:
        raise not_found("Grade", grade_id)
    return grade

@router.delete("/grades/{grade_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_grade(grade_id: str, gradebook: GradebookDep):
    try:
        await gradebook.delete_grade(grade_id)
    except StoreError as e:
        raise http_error(e)
