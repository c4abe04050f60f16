from fastapi import APIRouter, Depends, Path, Query, Request, status

from dailyping.schemas.entry_schemas import (
    CreateEntryRequest,
    ReplaceSubItemsRequest,
    StreakResponse,
    SubmissionResponse,
    UpdateEntryRequest,
)
from dailyping.services.entry_service import (
    EntryService,
    SubmissionService,
    get_entry_service,
    get_streak_service,
    get_submission_service,
)
from dailyping.services.streak_service import StreakService
from dailyping.utils.responses import ResponseBuilder

entries_router = APIRouter()


@entries_router.post(
    "/{user_id}/entries",
    response_model=SubmissionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Submit today's entry",
    description="Create the entry for the user's local day (or the given day) and update the streak. One entry per day.",
)
async def submit_entry(
    request: Request,
    entry_data: CreateEntryRequest,
    user_id: str = Path(..., description="User ID"),
    submission_service: SubmissionService = Depends(get_submission_service),
):
    submission = await submission_service.submit(user_id, entry_data)
    return ResponseBuilder.success(
        request=request,
        data=submission.model_dump(by_alias=True),
        message="Entry submitted successfully",
        status_code=status.HTTP_201_CREATED,
    )


@entries_router.get(
    "/{user_id}/entries/today",
    status_code=status.HTTP_200_OK,
    summary="Get today's entry",
)
async def get_today_entry(
    request: Request,
    user_id: str = Path(..., description="User ID"),
    entry_service: EntryService = Depends(get_entry_service),
):
    entry = await entry_service.get_today_entry(user_id)
    if entry is None:
        return ResponseBuilder.success(
            request=request, data=None, message="No entry submitted today"
        )
    return ResponseBuilder.success(
        request=request,
        data=entry.model_dump(by_alias=True),
        message="Entry retrieved successfully",
    )


@entries_router.get(
    "/{user_id}/entries",
    status_code=status.HTTP_200_OK,
    summary="List recent entries",
)
async def list_entries(
    request: Request,
    user_id: str = Path(..., description="User ID"),
    limit: int = Query(30, ge=1, le=365, description="Maximum number of entries"),
    entry_service: EntryService = Depends(get_entry_service),
):
    entries = await entry_service.list_entries(user_id, limit=limit)
    return ResponseBuilder.success(
        request=request,
        data=[entry.model_dump(by_alias=True) for entry in entries],
        message=f"Retrieved {len(entries)} entr{'ies' if len(entries) != 1 else 'y'}",
    )


@entries_router.patch(
    "/{user_id}/entries/{entry_id}",
    status_code=status.HTTP_200_OK,
    summary="Edit an entry",
    description="Update content, note, completion flag or reminder times. Content and note changes mark the entry as edited.",
)
async def update_entry(
    request: Request,
    update_data: UpdateEntryRequest,
    user_id: str = Path(..., description="User ID"),
    entry_id: str = Path(..., description="Entry ID"),
    entry_service: EntryService = Depends(get_entry_service),
):
    entry = await entry_service.update_entry(user_id, entry_id, update_data)
    return ResponseBuilder.success(
        request=request,
        data=entry.model_dump(by_alias=True),
        message="Entry updated successfully",
    )


@entries_router.patch(
    "/{user_id}/entries/{entry_id}/sub-items",
    status_code=status.HTTP_200_OK,
    summary="Replace an entry's sub-items",
)
async def replace_sub_items(
    request: Request,
    sub_items_data: ReplaceSubItemsRequest,
    user_id: str = Path(..., description="User ID"),
    entry_id: str = Path(..., description="Entry ID"),
    entry_service: EntryService = Depends(get_entry_service),
):
    entry = await entry_service.replace_sub_items(user_id, entry_id, sub_items_data)
    return ResponseBuilder.success(
        request=request,
        data=entry.model_dump(by_alias=True),
        message="Sub-items updated successfully",
    )


@entries_router.get(
    "/{user_id}/streak",
    status_code=status.HTTP_200_OK,
    summary="Get the user's streak",
)
async def get_streak(
    request: Request,
    user_id: str = Path(..., description="User ID"),
    streak_service: StreakService = Depends(get_streak_service),
):
    state = streak_service.get_state(user_id)
    streak = StreakResponse(
        current=state.current, max=state.max, last_entry_date=state.last_entry_date
    )
    return ResponseBuilder.success(
        request=request,
        data=streak.model_dump(by_alias=True),
        message="Streak retrieved successfully",
    )
