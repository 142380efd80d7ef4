import asyncio
import threading

import pytest

from conftest import stored_files
from fleet_inventory.exceptions import (
    DuplicateLicensePlateError,
    NotFoundError,
    UnsupportedMediaTypeError,
    ValidationError,
)
from fleet_inventory.services.media_manager import MediaUpload


@pytest.mark.asyncio
async def test_create_with_media_persists_files(vehicle_service, media_manager, vehicle_fields, png_upload):
    vehicle = await vehicle_service.create_vehicle(vehicle_fields(), [png_upload("a.png"), png_upload("b.png")])

    assert len(vehicle.media_files) == 2
    assert all(media_manager.resolve(ref).exists() for ref in vehicle.media_files)


@pytest.mark.asyncio
async def test_create_validation_failure_leaves_no_orphans(vehicle_service, upload_dir, vehicle_fields, png_upload):
    with pytest.raises(ValidationError):
        await vehicle_service.create_vehicle(vehicle_fields(year=1700), [png_upload()])

    assert stored_files(upload_dir) == []


@pytest.mark.asyncio
async def test_create_duplicate_plate_leaves_no_orphans(vehicle_service, upload_dir, vehicle_fields, png_upload):
    await vehicle_service.create_vehicle(vehicle_fields())

    with pytest.raises(DuplicateLicensePlateError):
        await vehicle_service.create_vehicle(vehicle_fields(), [png_upload()])

    assert stored_files(upload_dir) == []


@pytest.mark.asyncio
async def test_create_rejects_more_than_ten_files(vehicle_service, upload_dir, vehicle_fields, png_upload):
    with pytest.raises(ValidationError) as exc_info:
        await vehicle_service.create_vehicle(vehicle_fields(), [png_upload() for _ in range(11)])

    assert exc_info.value.errors[0]["field"] == "media"
    assert stored_files(upload_dir) == []


@pytest.mark.asyncio
async def test_update_unknown_vehicle_writes_nothing(vehicle_service, upload_dir, png_upload):
    with pytest.raises(NotFoundError):
        await vehicle_service.update_vehicle("missing", {"mileage": 5}, [png_upload()])

    assert stored_files(upload_dir) == []


@pytest.mark.asyncio
async def test_update_appends_media_and_fields(vehicle_service, vehicle_fields, png_upload):
    vehicle = await vehicle_service.create_vehicle(vehicle_fields(), [png_upload("a.png")])

    updated = await vehicle_service.update_vehicle(vehicle.id, {"mileage": 15000}, [png_upload("b.png")])

    assert updated.mileage == 15000
    assert updated.media_files[0] == vehicle.media_files[0]
    assert len(updated.media_files) == 2


@pytest.mark.asyncio
async def test_update_with_only_media(vehicle_service, vehicle_fields, png_upload):
    vehicle = await vehicle_service.create_vehicle(vehicle_fields(mileage=10))

    updated = await vehicle_service.update_vehicle(vehicle.id, {}, [png_upload()])

    assert updated.mileage == 10
    assert len(updated.media_files) == 1


@pytest.mark.asyncio
async def test_update_without_changes_refreshes_updated_at(vehicle_service, vehicle_fields):
    vehicle = await vehicle_service.create_vehicle(vehicle_fields())

    updated = await vehicle_service.update_vehicle(vehicle.id, {})

    assert updated.updated_at > vehicle.updated_at


@pytest.mark.asyncio
async def test_update_failure_purges_new_media(vehicle_service, media_manager, upload_dir, vehicle_fields, png_upload):
    await vehicle_service.create_vehicle(vehicle_fields(licensePlate="TAKEN-1"))
    vehicle = await vehicle_service.create_vehicle(vehicle_fields(licensePlate="MINE-1"), [png_upload()])

    with pytest.raises(DuplicateLicensePlateError):
        await vehicle_service.update_vehicle(vehicle.id, {"licensePlate": "TAKEN-1"}, [png_upload()])

    # only the file from the original create remains
    assert stored_files(upload_dir) == [vehicle.media_files[0].rsplit("/", 1)[-1]]


@pytest.mark.asyncio
async def test_update_rejects_bad_media_before_writing(vehicle_service, upload_dir, vehicle_fields):
    vehicle = await vehicle_service.create_vehicle(vehicle_fields())
    pdf = MediaUpload(content=b"%PDF", filename="a.pdf", content_type="application/pdf")

    with pytest.raises(UnsupportedMediaTypeError):
        await vehicle_service.update_vehicle(vehicle.id, {"mileage": 1}, [pdf])

    assert stored_files(upload_dir) == []
    assert (await vehicle_service.get_vehicle(vehicle.id)).mileage is None


@pytest.mark.asyncio
async def test_delete_purges_all_media(vehicle_service, upload_dir, vehicle_fields, png_upload):
    keep = await vehicle_service.create_vehicle(vehicle_fields(licensePlate="KEEP-1"), [png_upload()])
    doomed = await vehicle_service.create_vehicle(
        vehicle_fields(licensePlate="GONE-1"), [png_upload() for _ in range(3)]
    )

    await vehicle_service.delete_vehicle(doomed.id)

    assert [v.id for v in await vehicle_service.list_vehicles()] == [keep.id]
    assert stored_files(upload_dir) == [keep.media_files[0].rsplit("/", 1)[-1]]


@pytest.mark.asyncio
async def test_delete_succeeds_when_media_already_gone(vehicle_service, media_manager, vehicle_fields, png_upload):
    vehicle = await vehicle_service.create_vehicle(vehicle_fields(), [png_upload()])
    media_manager.resolve(vehicle.media_files[0]).unlink()

    await vehicle_service.delete_vehicle(vehicle.id)

    with pytest.raises(NotFoundError):
        await vehicle_service.get_vehicle(vehicle.id)


@pytest.mark.asyncio
async def test_delete_unknown(vehicle_service):
    with pytest.raises(NotFoundError):
        await vehicle_service.delete_vehicle("missing")


@pytest.mark.asyncio
async def test_list_vehicles_switches_to_search_on_any_filter(vehicle_service, vehicle_fields):
    await vehicle_service.create_vehicle(vehicle_fields(make="Toyota", licensePlate="T-1"))
    await vehicle_service.create_vehicle(vehicle_fields(make="Ford", model="Focus", year=2018, licensePlate="F-1"))

    assert len(await vehicle_service.list_vehicles()) == 2
    assert [v.make for v in await vehicle_service.list_vehicles(make="ford")] == ["Ford"]
    assert [v.make for v in await vehicle_service.list_vehicles(year="2018")] == ["Ford"]
    assert [v.make for v in await vehicle_service.list_vehicles(search="t-1")] == ["Toyota"]


@pytest.mark.asyncio
async def test_remove_media_delegates_to_detach(vehicle_service, media_manager, vehicle_fields, png_upload):
    vehicle = await vehicle_service.create_vehicle(vehicle_fields(), [png_upload(), png_upload()])

    updated = await vehicle_service.remove_media(vehicle.id, vehicle.media_files[1])

    assert updated.media_files == vehicle.media_files[:1]
    assert not media_manager.resolve(vehicle.media_files[1]).exists()


@pytest.mark.asyncio
async def test_file_io_runs_off_the_event_loop(
    vehicle_service, media_manager, vehicle_fields, png_upload, monkeypatch
):
    loop_thread = threading.get_ident()
    io_threads = []

    def record(method):
        def wrapper(*args, **kwargs):
            io_threads.append(threading.get_ident())
            return method(*args, **kwargs)
        return wrapper

    monkeypatch.setattr(media_manager, "store_many", record(media_manager.store_many))
    monkeypatch.setattr(media_manager, "purge", record(media_manager.purge))
    monkeypatch.setattr(media_manager, "_unlink", record(media_manager._unlink))

    vehicle = await vehicle_service.create_vehicle(vehicle_fields(), [png_upload(), png_upload()])
    await vehicle_service.remove_media(vehicle.id, vehicle.media_files[0])
    await vehicle_service.delete_vehicle(vehicle.id)

    # store_many, _unlink from detach, purge from delete
    assert len(io_threads) >= 3
    assert loop_thread not in io_threads


@pytest.mark.asyncio
async def test_concurrent_appends_keep_every_reference(vehicle_service, media_manager, vehicle_fields, png_upload):
    vehicle = await vehicle_service.create_vehicle(vehicle_fields())

    await asyncio.gather(
        vehicle_service.update_vehicle(vehicle.id, {}, [png_upload("a.png")]),
        vehicle_service.update_vehicle(vehicle.id, {}, [png_upload("b.png")]),
    )

    stored = await vehicle_service.get_vehicle(vehicle.id)
    assert len(stored.media_files) == 2
    assert all(media_manager.resolve(ref).exists() for ref in stored.media_files)
