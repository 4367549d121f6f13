# gradebook/routers/v1/students.py
from typing import Annotated, List
from fastapi import APIRouter, Depends, status
from gradebook.core.deps import get_gradebook
from gradebook.core.errors import StoreError
from gradebook.routers.v1.errors import http_error, not_found
from gradebook.schemas.entities import Grade, Student
from gradebook.schemas.requests import StudentCreate, StudentUpdate
from gradebook.services.gradebook_service import GradebookService

router = APIRouter()
GradebookDep = Annotated[GradebookService, Depends(get_gradebook)]

@router.post("/students", status_code=status.HTTP_201_CREATED, response_model=Student)
async def create_student(body: StudentCreate, gradebook: GradebookDep):
    try:
        return await gradebook.add_student(body.model_dump(exclude_none=True))
    except StoreError as e:
        raise http_error(e)

@router.get("/students", response_model=List[Student])
async def list_students(gradebook: GradebookDep):
    try:
        return await gradebook.list_students()
    except StoreError as e:
        raise http_error(e)

@router.get("/students/{student_id}", response_model=Student)
async def get_student(student_id: str, gradebook: GradebookDep):
    try:
        student = await gradebook.get_student(student_id)
    except StoreError as e:
        raise http_error(e)
    if student is None:
        raise not_found("Student", student_id)
    return student

@router.patch("/students/{student_id}", status_code=status.HTTP_204_NO_CONTENT)
async def update_student(student_id: str, body: StudentUpdate, gradebook: GradebookDep):
    try:
        await gradebook.update_student(student_id, body.model_dump(exclude_none=True))
    except StoreError as e:
        raise http_error(e)

@router.get("/students/{student_id}/grades", response_model=List[Grade])
async def student_grades(student_id: str, gradebook: GradebookDep, order: str = "desc"):
    try:
        return await gradebook.grades_for_student(student_id, descending=order != "asc")
    except StoreError as e:
        raise http_error(e)

@router.get("/students/{student_id}/average")
async def student_average(student_id: str, gradebook: GradebookDep):
    try:
        average = await gradebook.student_average(student_id)
    except StoreError as e:
        raise http_error(e)
    return {"studentId": student_id, "averageScore": average}
