"""
Catalog API - contractors, document types and per-contractor requirements.

Reads are open to any active profile; changes are admin-only.
"""
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.db.models import Contractor, DocType, ContractorRequirement, AuditLog
from app.core.rbac import require_admin, require_contractor, Role
from app.core.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/api/catalog", tags=["Catalog"])


# ============= SCHEMAS =============

class ContractorCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)


class ContractorResponse(BaseModel):
    id: int
    name: str

    model_config = {"from_attributes": True}


class DocTypeCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    category: str = Field(..., min_length=1, max_length=255)
    code: Optional[str] = Field(None, max_length=50)
    is_critical: bool = False
    weight: int = Field(1, ge=1)


class DocTypeUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    category: Optional[str] = Field(None, min_length=1, max_length=255)
    code: Optional[str] = Field(None, max_length=50)
    is_critical: Optional[bool] = None
    weight: Optional[int] = Field(None, ge=1)


class DocTypeResponse(BaseModel):
    id: int
    code: Optional[str]
    name: str
    category: str
    is_critical: bool
    weight: int

    model_config = {"from_attributes": True}


class CriticalToggle(BaseModel):
    is_critical: bool


class RequirementUpsert(BaseModel):
    contractor_id: int
    doc_type_id: int
    required_count: int = Field(1, ge=0)
    planned_due_date: Optional[date] = None


class RequirementResponse(BaseModel):
    id: int
    contractor_id: int
    doc_type_id: int
    required_count: int
    planned_due_date: Optional[date]

    model_config = {"from_attributes": True}


def _audit(db: Session, request: Request, user_context: dict, action: str,
           entity_type: str, entity_id: Optional[int], details: Optional[dict] = None):
    db.add(AuditLog(
        user_id=user_context["user_id"],
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        details=details,
        ip_address=request.client.host if request.client else None,
    ))


# ============= CONTRACTORS =============

@router.get("/contractors", response_model=List[ContractorResponse])
async def list_contractors(
    user_context: dict = Depends(require_contractor),
    db: Session = Depends(get_db)
):
    """Admins see every contractor; contractors see only their own."""
    query = db.query(Contractor)
    if user_context["role"] != Role.ADMIN:
        query = query.filter(Contractor.id == user_context["contractor_id"])
    return query.order_by(Contractor.name).all()


@router.post("/contractors", response_model=ContractorResponse, status_code=status.HTTP_201_CREATED)
async def create_contractor(
    request: Request,
    data: ContractorCreate,
    user_context: dict = Depends(require_admin),
    db: Session = Depends(get_db)
):
    name = data.name.strip()
    if db.query(Contractor).filter(Contractor.name == name).first():
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Contractor already exists")

    contractor = Contractor(name=name)
    db.add(contractor)
    db.flush()
    _audit(db, request, user_context, "create_contractor", "contractor", contractor.id, {"name": name})
    db.commit()
    db.refresh(contractor)

    logger.info(f"Contractor created: {name} (ID: {contractor.id})")
    return contractor


@router.patch("/contractors/{contractor_id}", response_model=ContractorResponse)
async def rename_contractor(
    contractor_id: int,
    request: Request,
    data: ContractorCreate,
    user_context: dict = Depends(require_admin),
    db: Session = Depends(get_db)
):
    contractor = db.get(Contractor, contractor_id)
    if not contractor:
        raise HTTPException(status_code=404, detail="Contractor not found")

    contractor.name = data.name.strip()
    _audit(db, request, user_context, "update_contractor", "contractor", contractor.id, {"name": contractor.name})
    db.commit()
    db.refresh(contractor)
    return contractor


# ============= DOC TYPES =============

@router.get("/doc-types", response_model=List[DocTypeResponse])
async def list_doc_types(
    category: Optional[str] = Query(None),
    critical_only: bool = Query(False),
    user_context: dict = Depends(require_contractor),
    db: Session = Depends(get_db)
):
    query = db.query(DocType)
    if category:
        query = query.filter(DocType.category == category)
    if critical_only:
        query = query.filter(DocType.is_critical.is_(True))
    return query.order_by(DocType.category, DocType.code, DocType.name).all()


@router.post("/doc-types", response_model=DocTypeResponse, status_code=status.HTTP_201_CREATED)
async def create_doc_type(
    request: Request,
    data: DocTypeCreate,
    user_context: dict = Depends(require_admin),
    db: Session = Depends(get_db)
):
    doc_type = DocType(**data.model_dump())
    db.add(doc_type)
    db.flush()
    _audit(db, request, user_context, "create_doc_type", "doc_type", doc_type.id, data.model_dump())
    db.commit()
    db.refresh(doc_type)
    return doc_type


@router.patch("/doc-types/{doc_type_id}", response_model=DocTypeResponse)
async def update_doc_type(
    doc_type_id: int,
    request: Request,
    data: DocTypeUpdate,
    user_context: dict = Depends(require_admin),
    db: Session = Depends(get_db)
):
    doc_type = db.get(DocType, doc_type_id)
    if not doc_type:
        raise HTTPException(status_code=404, detail="Document type not found")

    changes = data.model_dump(exclude_unset=True)
    for field, value in changes.items():
        setattr(doc_type, field, value)

    _audit(db, request, user_context, "update_doc_type", "doc_type", doc_type.id, changes)
    db.commit()
    db.refresh(doc_type)
    return doc_type


@router.put("/doc-types/{doc_type_id}/critical", response_model=DocTypeResponse)
async def set_doc_type_critical(
    doc_type_id: int,
    request: Request,
    data: CriticalToggle,
    user_context: dict = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Mark a document type as must-have (or not)."""
    doc_type = db.get(DocType, doc_type_id)
    if not doc_type:
        raise HTTPException(status_code=404, detail="Document type not found")

    doc_type.is_critical = data.is_critical
    _audit(db, request, user_context, "set_critical", "doc_type", doc_type.id, {"is_critical": data.is_critical})
    db.commit()
    db.refresh(doc_type)
    return doc_type


# ============= REQUIREMENTS =============

@router.get("/requirements", response_model=List[RequirementResponse])
async def list_requirements(
    contractor_id: Optional[int] = Query(None),
    user_context: dict = Depends(require_contractor),
    db: Session = Depends(get_db)
):
    query = db.query(ContractorRequirement)
    if user_context["role"] != Role.ADMIN:
        contractor_id = user_context["contractor_id"]
    if contractor_id:
        query = query.filter(ContractorRequirement.contractor_id == contractor_id)
    return query.order_by(ContractorRequirement.contractor_id, ContractorRequirement.doc_type_id).all()


@router.put("/requirements", response_model=RequirementResponse)
async def upsert_requirement(
    request: Request,
    data: RequirementUpsert,
    user_context: dict = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Create or update the requirement for a (contractor, doc type) pair."""
    if db.get(Contractor, data.contractor_id) is None:
        raise HTTPException(status_code=404, detail="Contractor not found")
    if db.get(DocType, data.doc_type_id) is None:
        raise HTTPException(status_code=404, detail="Document type not found")

    requirement = db.query(ContractorRequirement).filter(
        ContractorRequirement.contractor_id == data.contractor_id,
        ContractorRequirement.doc_type_id == data.doc_type_id,
    ).first()
    if requirement is None:
        requirement = ContractorRequirement(
            contractor_id=data.contractor_id,
            doc_type_id=data.doc_type_id,
        )
        db.add(requirement)

    requirement.required_count = data.required_count
    requirement.planned_due_date = data.planned_due_date
    db.flush()

    _audit(db, request, user_context, "upsert_requirement", "requirement", requirement.id,
           data.model_dump(mode="json"))
    db.commit()
    db.refresh(requirement)
    return requirement


@router.delete("/requirements/{requirement_id}")
async def delete_requirement(
    requirement_id: int,
    request: Request,
    user_context: dict = Depends(require_admin),
    db: Session = Depends(get_db)
):
    requirement = db.get(ContractorRequirement, requirement_id)
    if not requirement:
        raise HTTPException(status_code=404, detail="Requirement not found")

    details = {"contractor_id": requirement.contractor_id, "doc_type_id": requirement.doc_type_id}
    db.delete(requirement)
    _audit(db, request, user_context, "delete_requirement", "requirement", requirement_id, details)
    db.commit()
    return {"message": "Requirement deleted"}
