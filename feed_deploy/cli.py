import json
import os
import sys
from typing import Dict, Optional, Tuple

import click

from .artifacts import DeployItem, DeployRequest
from .config import EngineConfig, load_env_files
from .destination_config import DestinationMode, redacted_view
from .destination_store import DestinationStore
from .exceptions import FeedDeployError
from .logging_utils import get_logger, setup_logging
from .secrets_cipher import KeyProvider, configure_key_provider, generate_key
from . import orchestrator


logger = get_logger(__name__)

_MODE_CHOICE = click.Choice([m.value for m in DestinationMode], case_sensitive=False)
FEED_BASE_URL_PLACEHOLDER = "{{public_base_url}}"


@click.group()
@click.option(
    "-C",
    "--chdir",
    "chdir",
    type=click.Path(file_okay=False, dir_okay=True, exists=True),
    default=".",
    help="작업 디렉토리 (기본: 현재 디렉토리)",
)
@click.option(
    "-v",
    "--verbose",
    count=True,
    help="로그 레벨을 DEBUG로 올립니다. (-vv 는 프로토콜 라이브러리 로그까지 출력)",
)
@click.pass_context
def main(ctx: click.Context, chdir: str, verbose: int) -> None:
    """피드/미디어 파일을 S3, FTP, SFTP, WebDAV, IPFS, SMB 로 증분 배포하는 CLI"""
    setup_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["chdir"] = chdir
    ctx.obj["verbose"] = verbose


def _load_engine_from_ctx(ctx: click.Context) -> EngineConfig:
    base_dir: str = ctx.obj["chdir"]
    load_env_files(base_dir)
    cfg = EngineConfig.from_env()
    if not os.path.isabs(cfg.secrets_dir):
        cfg.secrets_dir = os.path.join(base_dir, cfg.secrets_dir)
    if not os.path.isabs(cfg.store_path):
        cfg.store_path = os.path.join(base_dir, cfg.store_path)
    configure_key_provider(KeyProvider.from_config(cfg))
    logger.debug("Engine config loaded: store=%s secrets_dir=%s", cfg.store_path, cfg.secrets_dir)
    return cfg


def _open_store(ctx: click.Context) -> Tuple[EngineConfig, DestinationStore]:
    try:
        cfg = _load_engine_from_ctx(ctx)
    except Exception as e:  # noqa: BLE001
        click.echo(f"[ERROR] 설정 로드 실패: {e}", err=True)
        sys.exit(1)
    return cfg, DestinationStore(cfg.store_path)


def _parse_fields(pairs: Tuple[str, ...], file_pairs: Tuple[str, ...] = ()) -> Dict[str, str]:
    """
    key=value 목록을 dict 로 만든다.
    file_pairs 는 key=path 형태이며 파일 내용을 값으로 사용한다. (예: SFTP private_key)
    """
    def split(raw: str) -> Tuple[str, str]:
        if "=" not in raw:
            raise click.BadParameter(f"key=value 형식이어야 합니다: {raw}")
        key, value = raw.split("=", 1)
        return key.strip(), value

    fields: Dict[str, str] = dict(split(raw) for raw in pairs)
    for raw in file_pairs:
        key, path = split(raw)
        with open(os.path.expanduser(path), "r", encoding="utf-8") as f:
            fields[key] = f.read()
    return fields


def _load_manifest(path: str) -> DeployRequest:
    """
    배포 manifest(JSON) 를 DeployRequest 로 변환한다.
    상대 경로는 manifest 파일 위치 기준으로 해석한다.
    feed 파일 안의 {{public_base_url}} 은 배포 시점의 공개 URL 로 치환된다.
    (IPFS 는 업로드 후 계산된 gateway URL 로 다시 렌더링)

    {
      "feed": "feed.xml",
      "cover": "cover.png",
      "public_base_url": "https://cdn.example.com/show/",
      "items": [{"id": "ep1", "audio": "ep1.mp3", "artwork": "ep1.jpg", "transcript": "ep1.srt"}]
    }
    """
    base = os.path.dirname(os.path.abspath(path))

    def resolve(p: Optional[str]) -> Optional[str]:
        if not p:
            return None
        return p if os.path.isabs(p) else os.path.join(base, p)

    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)

    feed_path = resolve(data.get("feed"))
    if not feed_path:
        raise ValueError("manifest 에 feed 경로가 없습니다.")
    with open(feed_path, "r", encoding="utf-8") as f:
        template = f.read()

    def render(base_url: str) -> bytes:
        return template.replace(FEED_BASE_URL_PLACEHOLDER, base_url).encode("utf-8")

    public_base_url = data.get("public_base_url")

    items = []
    for raw in data.get("items", []):
        if not raw.get("id"):
            raise ValueError(f"manifest item 에 id 가 없습니다: {raw}")
        items.append(
            DeployItem(
                id=str(raw["id"]),
                audio_path=resolve(raw.get("audio")),
                artwork_path=resolve(raw.get("artwork")),
                transcript_path=resolve(raw.get("transcript")),
                audio_mime=raw.get("audio_mime"),
            )
        )

    return DeployRequest(
        feed=render(public_base_url or ""),
        items=items,
        cover_path=resolve(data.get("cover")),
        public_base_url=public_base_url,
        render_feed=render if FEED_BASE_URL_PLACEHOLDER in template else None,
    )


@main.command()
@click.argument("collection_id")
@click.option("--mode", "mode", type=_MODE_CHOICE, required=True, help="배포 모드")
@click.option("--field", "field_pairs", multiple=True, help="설정 값 key=value (여러 번 지정 가능)")
@click.option("--field-file", "file_pairs", multiple=True, help="파일 내용을 값으로 사용하는 key=path")
@click.option("--public-base-url", "public_base_url", default=None, help="피드/enclosure 공개 URL")
@click.option("--name", "name", default=None, help="표시 이름")
@click.pass_context
def create(ctx: click.Context, collection_id: str, mode: str, field_pairs: Tuple[str, ...],
           file_pairs: Tuple[str, ...], public_base_url: Optional[str], name: Optional[str]) -> None:
    """컬렉션에 배포 대상을 등록 (컬렉션당 하나)"""
    _, store = _open_store(ctx)
    try:
        dest = orchestrator.create_destination(
            store, collection_id, mode, _parse_fields(field_pairs, file_pairs),
            name=name, public_base_url=public_base_url,
        )
    except (FeedDeployError, ValueError, OSError) as e:
        click.echo(f"[ERROR] 배포 대상 생성 실패: {e}", err=True)
        sys.exit(1)
    click.echo(dest.id)


@main.command()
@click.argument("destination_id")
@click.option("--mode", "mode", type=_MODE_CHOICE, default=None, help="모드 변경")
@click.option("--field", "field_pairs", multiple=True, help="변경할 설정 값 key=value")
@click.option("--field-file", "file_pairs", multiple=True, help="파일 내용을 값으로 사용하는 key=path")
@click.option("--public-base-url", "public_base_url", default=None, help="빈 문자열이면 제거")
@click.pass_context
def update(ctx: click.Context, destination_id: str, mode: Optional[str], field_pairs: Tuple[str, ...],
           file_pairs: Tuple[str, ...], public_base_url: Optional[str]) -> None:
    """배포 대상 설정을 부분 갱신 (지정하지 않은 값은 유지)"""
    _, store = _open_store(ctx)
    try:
        dest = orchestrator.update_destination(
            store, destination_id, _parse_fields(field_pairs, file_pairs),
            mode=mode, public_base_url=public_base_url,
        )
    except (FeedDeployError, ValueError, OSError) as e:
        click.echo(f"[ERROR] 배포 대상 갱신 실패: {e}", err=True)
        sys.exit(1)
    click.echo(f"updated {dest.id} ({dest.mode})")


@main.command()
@click.argument("destination_id")
@click.pass_context
def show(ctx: click.Context, destination_id: str) -> None:
    """배포 대상 정보를 출력 (자격증명은 가려서 출력)"""
    _, store = _open_store(ctx)
    try:
        dest = store.get(destination_id)
        view = redacted_view(dest.decode())
    except FeedDeployError as e:
        click.echo(f"[ERROR] {e}", err=True)
        sys.exit(1)

    lines = [
        f"# Destination {dest.id}",
        f"- collection: {dest.collection_id}",
        f"- mode: {dest.mode}",
        f"- name: {dest.name or '(not set)'}",
        f"- public_base_url: {dest.public_base_url or '(not set)'}",
        f"- updated_at: {dest.updated_at}",
        "",
        "## Config",
    ]
    for key, value in view.items():
        lines.append(f"- {key}: {value if value not in (None, '') else '(not set)'}")
    click.echo("\n".join(lines))


@main.command(name="list")
@click.pass_context
def list_destinations(ctx: click.Context) -> None:
    """등록된 배포 대상 목록"""
    _, store = _open_store(ctx)
    destinations = store.list()
    if not destinations:
        click.echo("(none)")
        return
    for d in destinations:
        click.echo(f"{d.id}\t{d.collection_id}\t{d.mode}\t{d.name or ''}")


@main.command()
@click.argument("destination_id")
@click.pass_context
def delete(ctx: click.Context, destination_id: str) -> None:
    """배포 대상 삭제"""
    _, store = _open_store(ctx)
    try:
        store.delete(destination_id)
    except FeedDeployError as e:
        click.echo(f"[ERROR] {e}", err=True)
        sys.exit(1)
    click.echo(f"deleted {destination_id}")


@main.command(name="test")
@click.argument("destination_id")
@click.pass_context
def test_cmd(ctx: click.Context, destination_id: str) -> None:
    """접속/권한 확인 (실패 시 exit 1)"""
    engine, store = _open_store(ctx)
    try:
        result = orchestrator.test_destination_by_id(store, destination_id, engine)
    except FeedDeployError as e:
        click.echo(f"[ERROR] {e}", err=True)
        sys.exit(1)

    if not result.ok:
        click.echo(f"[FAIL] {result.error}", err=True)
        sys.exit(1)
    click.echo("[OK] 접근 가능")


@main.command()
@click.argument("destination_id")
@click.option(
    "--manifest",
    "manifest",
    type=click.Path(dir_okay=False, exists=True),
    required=True,
    help="배포할 feed/cover/items 를 적은 JSON 파일",
)
@click.pass_context
def plan(ctx: click.Context, destination_id: str, manifest: str) -> None:
    """배포 시 동기화될 원격 경로를 출력 (네트워크 호출 없음)"""
    _, store = _open_store(ctx)
    try:
        request = _load_manifest(manifest)
        report = orchestrator.plan_deploy(store.get(destination_id), request)
    except (FeedDeployError, ValueError, OSError) as e:
        click.echo(f"[ERROR] {e}", err=True)
        sys.exit(1)
    click.echo(report)


@main.command(name="deploy")
@click.argument("destination_id")
@click.option(
    "--manifest",
    "manifest",
    type=click.Path(dir_okay=False, exists=True),
    required=True,
    help="배포할 feed/cover/items 를 적은 JSON 파일",
)
@click.pass_context
def deploy(ctx: click.Context, destination_id: str, manifest: str) -> None:
    """변경된 파일만 업로드 (오류가 하나라도 있으면 exit 1)"""
    engine, store = _open_store(ctx)
    try:
        request = _load_manifest(manifest)
        destination = store.get(destination_id)
    except (FeedDeployError, ValueError, OSError) as e:
        click.echo(f"[ERROR] {e}", err=True)
        sys.exit(1)

    result = orchestrator.run_deploy(destination, request, engine)
    click.echo(orchestrator.format_summary(destination, result))

    if result.errors:
        sys.exit(1)


@main.command()
def keygen() -> None:
    """FEED_DEPLOY_SECRETS_KEY 로 사용할 새 키를 출력"""
    click.echo(generate_key())
