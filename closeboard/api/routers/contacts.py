"""/api/contacts (also served as /api/entities) and /api/groups."""

from fastapi import APIRouter, Depends, File, Query, Response, UploadFile

from closeboard.api.deps import get_contact_service
from closeboard.api.schemas import (
    ContactCreateIn,
    ContactImportOut,
    ContactListOut,
    ContactOut,
    ContactUpdateIn,
    DeletedOut,
    FindOrCreateIn,
    FindOrCreateOut,
    GroupIn,
    GroupOut,
    GroupUpdateIn,
    GroupWithCountOut,
    IdsIn,
    MembersIn,
    TagIn,
    TagOut,
)
from closeboard.contacts.service import ContactDetail, ContactService
from closeboard.models.entities import ContactType

router = APIRouter(prefix="/api/contacts", tags=["contacts"])
entities_router = APIRouter(prefix="/api/entities", tags=["contacts"])
groups_router = APIRouter(prefix="/api/groups", tags=["groups"])


def _contact_out(detail: ContactDetail) -> ContactOut:
    out = ContactOut.model_validate(detail.contact)
    out.groups = [GroupOut.model_validate(g) for g in detail.groups]
    out.tags = [TagOut(tag_key=t.tag_key, metadata=t.tag_metadata) for t in detail.tags]
    return out


# Routes with fixed paths first so "/tags" and "/import" are not read as contact ids.


@router.get("/tags", response_model=list[str])
def list_tag_keys(service: ContactService = Depends(get_contact_service)) -> list[str]:
    return service.tag_keys()


@router.put("/tags", response_model=TagOut)
def set_tag(body: TagIn, service: ContactService = Depends(get_contact_service)) -> TagOut:
    tag = service.set_tag(body.contact_id, body.tag_key, body.metadata)
    return TagOut(tag_key=tag.tag_key, metadata=tag.tag_metadata)


@router.delete("/tags", status_code=204)
def remove_tag(
    contact_id: int = Query(...),
    tag_key: str = Query(...),
    service: ContactService = Depends(get_contact_service),
) -> Response:
    service.remove_tag(contact_id, tag_key)
    return Response(status_code=204)


@router.post("/import", response_model=ContactImportOut)
async def import_contacts(
    file: UploadFile = File(...), service: ContactService = Depends(get_contact_service)
) -> ContactImportOut:
    """Upsert contacts by email from a CSV/XLSX upload."""
    data = await file.read()
    result = service.import_file(data, file.filename, file.content_type)
    return ContactImportOut(
        created=result.created,
        updated=result.updated,
        skipped=result.skipped,
        groups_created=result.groups_created,
        tags_set=result.tags_set,
        total_rows=result.total_rows,
        errors=result.errors,
    )


@router.post("/find-or-create", response_model=FindOrCreateOut)
def find_or_create(body: FindOrCreateIn, service: ContactService = Depends(get_contact_service)) -> FindOrCreateOut:
    contact, created = service.find_or_create_by_email(body.email, body.first_name)
    return FindOrCreateOut(contact=_contact_out(service.detail(contact.id)), created=created)


@router.post("/bulk-delete", response_model=DeletedOut)
def bulk_delete(body: IdsIn, service: ContactService = Depends(get_contact_service)) -> DeletedOut:
    return DeletedOut(deleted=service.bulk_delete(body.ids))


def list_contacts(
    search: str | None = Query(default=None),
    group_id: int | None = Query(default=None),
    contact_type: ContactType | None = Query(default=None, alias="type"),
    tag: list[str] | None = Query(default=None, description="Contacts must carry every listed tag"),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    service: ContactService = Depends(get_contact_service),
) -> ContactListOut:
    details, total = service.list_contacts(
        search=search, group_id=group_id, contact_type=contact_type, tags=tag, limit=limit, offset=offset
    )
    return ContactListOut(items=[_contact_out(d) for d in details], total=total)


def create_contact(body: ContactCreateIn, service: ContactService = Depends(get_contact_service)) -> ContactOut:
    contact = service.create(
        first_name=body.first_name,
        email=body.email,
        group_ids=body.group_ids,
        last_name=body.last_name,
        phone=body.phone,
        company=body.company,
        contact_type=body.contact_type,
    )
    return _contact_out(service.detail(contact.id))


def get_contact(contact_id: int, service: ContactService = Depends(get_contact_service)) -> ContactOut:
    return _contact_out(service.detail(contact_id))


def update_contact(
    contact_id: int, body: ContactUpdateIn, service: ContactService = Depends(get_contact_service)
) -> ContactOut:
    service.update(contact_id, **body.model_dump(exclude_unset=True))
    return _contact_out(service.detail(contact_id))


def delete_contact(contact_id: int, service: ContactService = Depends(get_contact_service)) -> Response:
    service.delete(contact_id)
    return Response(status_code=204)


for _r in (router, entities_router):
    _r.add_api_route("", list_contacts, methods=["GET"], response_model=ContactListOut)
    _r.add_api_route("", create_contact, methods=["POST"], response_model=ContactOut, status_code=201)
    _r.add_api_route("/{contact_id}", get_contact, methods=["GET"], response_model=ContactOut)
    _r.add_api_route("/{contact_id}", update_contact, methods=["PATCH"], response_model=ContactOut)
    _r.add_api_route("/{contact_id}", delete_contact, methods=["DELETE"], status_code=204)


# --- groups ---


@groups_router.get("", response_model=list[GroupWithCountOut])
def list_groups(service: ContactService = Depends(get_contact_service)) -> list[GroupWithCountOut]:
    return [
        GroupWithCountOut(id=g.id, name=g.name, color=g.color, member_count=count) for g, count in service.list_groups()
    ]


@groups_router.post("", response_model=GroupOut, status_code=201)
def create_group(body: GroupIn, service: ContactService = Depends(get_contact_service)) -> GroupOut:
    return GroupOut.model_validate(service.create_group(body.name, body.color))


@groups_router.patch("/{group_id}", response_model=GroupOut)
def update_group(
    group_id: int, body: GroupUpdateIn, service: ContactService = Depends(get_contact_service)
) -> GroupOut:
    return GroupOut.model_validate(service.update_group(group_id, name=body.name, color=body.color))


@groups_router.delete("/{group_id}", status_code=204)
def delete_group(group_id: int, service: ContactService = Depends(get_contact_service)) -> Response:
    service.delete_group(group_id)
    return Response(status_code=204)


@groups_router.post("/{group_id}/members", status_code=204)
def add_members(group_id: int, body: MembersIn, service: ContactService = Depends(get_contact_service)) -> Response:
    service.add_members(group_id, body.contact_ids)
    return Response(status_code=204)


@groups_router.delete("/{group_id}/members/{contact_id}", status_code=204)
def remove_member(group_id: int, contact_id: int, service: ContactService = Depends(get_contact_service)) -> Response:
    service.remove_member(group_id, contact_id)
    return Response(status_code=204)
