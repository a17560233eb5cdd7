# skybox_app/services/object_store.py
# -*- coding: utf-8 -*-
"""Acesso ao bucket R2 (API S3) via boto3."""
from __future__ import annotations
from typing import Iterable, Iterator

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError
from flask import current_app

from ..errors import ExternalStoreFailure

_MISSING_CODES = {"NoSuchKey", "404", "NotFound"}


class ObjectNotFound(Exception):
    """O storage respondeu que a chave não existe."""

    def __init__(self, key: str):
        super().__init__(key)
        self.key = key


def iter_chunks(data: bytes, size: int) -> Iterator[bytes]:
    if size <= 0:
        raise ValueError("chunk size deve ser positivo")
    for start in range(0, len(data), size):
        yield data[start:start + size]


def _is_missing(err: ClientError) -> bool:
    code = str(err.response.get("Error", {}).get("Code", ""))
    status = err.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
    return code in _MISSING_CODES or status == 404


class R2ObjectStore:
    def __init__(self, client, bucket: str, *, multipart_threshold: int, chunk_size: int):
        self.client = client
        self.bucket = bucket
        self.multipart_threshold = multipart_threshold
        self.chunk_size = chunk_size

    @classmethod
    def from_config(cls, config) -> "R2ObjectStore":
        timeout = int(config.get("OBJECT_STORE_TIMEOUT_SECONDS", 300))
        client = boto3.client(
            "s3",
            endpoint_url=config.get("R2_ENDPOINT") or None,
            aws_access_key_id=config.get("R2_ACCESS_KEY_ID") or None,
            aws_secret_access_key=config.get("R2_SECRET_ACCESS_KEY") or None,
            region_name="auto",
            config=BotoConfig(
                signature_version="s3v4",
                connect_timeout=timeout,
                read_timeout=timeout,
                # sem retry automático
                retries={"total_max_attempts": 1, "mode": "standard"},
            ),
        )
        return cls(
            client,
            config.get("R2_BUCKET_NAME"),
            multipart_threshold=int(config.get("MULTIPART_THRESHOLD_BYTES")),
            chunk_size=int(config.get("MULTIPART_CHUNK_BYTES")),
        )

    # ---------------------------------------------------------------- escrita
    def upload(self, key: str, data: bytes, content_type: str) -> None:
        """Escolhe put simples ou multipart conforme o tamanho."""
        if len(data) > self.multipart_threshold:
            self.put_multipart(key, iter_chunks(data, self.chunk_size), content_type)
        else:
            self.put(key, data, content_type)

    def put(self, key: str, data: bytes, content_type: str) -> None:
        try:
            self.client.put_object(
                Bucket=self.bucket, Key=key, Body=data,
                ContentType=content_type, ContentLength=len(data),
            )
        except (ClientError, BotoCoreError) as e:
            raise ExternalStoreFailure(f"Falha no upload para o storage: {key}") from e
        current_app.logger.info("Arquivo enviado ao R2: %s", key)

    def put_multipart(self, key: str, chunks: Iterable[bytes], content_type: str) -> None:
        try:
            mpu = self.client.create_multipart_upload(Bucket=self.bucket, Key=key, ContentType=content_type)
        except (ClientError, BotoCoreError) as e:
            raise ExternalStoreFailure(f"Falha ao iniciar multipart: {key}") from e

        upload_id = mpu["UploadId"]
        parts = []
        try:
            for number, chunk in enumerate(chunks, start=1):
                resp = self.client.upload_part(
                    Bucket=self.bucket, Key=key, PartNumber=number,
                    UploadId=upload_id, Body=chunk,
                )
                parts.append({"ETag": resp["ETag"], "PartNumber": number})
            self.client.complete_multipart_upload(
                Bucket=self.bucket, Key=key, UploadId=upload_id,
                MultipartUpload={"Parts": parts},
            )
        except (ClientError, BotoCoreError) as e:
            current_app.logger.warning("Multipart falhou em %s (parte %d); abortando", key, len(parts) + 1)
            self._abort(key, upload_id)
            raise ExternalStoreFailure(f"Falha no upload multipart: {key}") from e
        current_app.logger.info("Arquivo enviado ao R2 em %d partes: %s", len(parts), key)

    def _abort(self, key: str, upload_id: str) -> None:
        try:
            self.client.abort_multipart_upload(Bucket=self.bucket, Key=key, UploadId=upload_id)
        except (ClientError, BotoCoreError):
            current_app.logger.exception("Abort do multipart falhou: %s (upload_id=%s)", key, upload_id)

    # ---------------------------------------------------------------- leitura
    def get(self, key: str) -> bytes:
        try:
            obj = self.client.get_object(Bucket=self.bucket, Key=key)
            return obj["Body"].read()
        except ClientError as e:
            if _is_missing(e):
                raise ObjectNotFound(key) from e
            raise ExternalStoreFailure(f"Falha ao baixar do storage: {key}") from e
        except BotoCoreError as e:
            raise ExternalStoreFailure(f"Falha ao baixar do storage: {key}") from e

    def exists(self, key: str) -> bool:
        try:
            self.client.head_object(Bucket=self.bucket, Key=key)
            return True
        except ClientError as e:
            if _is_missing(e):
                return False
            raise ExternalStoreFailure(f"Falha ao consultar o storage: {key}") from e
        except BotoCoreError as e:
            raise ExternalStoreFailure(f"Falha ao consultar o storage: {key}") from e

    def delete(self, key: str) -> None:
        """Idempotente: chave já ausente conta como sucesso."""
        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if not _is_missing(e):
                raise ExternalStoreFailure(f"Falha ao remover do storage: {key}") from e
        except BotoCoreError as e:
            raise ExternalStoreFailure(f"Falha ao remover do storage: {key}") from e
        current_app.logger.info("Arquivo removido do R2: %s", key)

    # ---------------------------------------------------------------- URLs
    def presigned_url(self, key: str, expires_in: int = 3600) -> str:
        try:
            return self.client.generate_presigned_url(
                "get_object", Params={"Bucket": self.bucket, "Key": key}, ExpiresIn=expires_in,
            )
        except (ClientError, BotoCoreError) as e:
            raise ExternalStoreFailure(f"Falha ao gerar URL assinada: {key}") from e


def init_object_store(app):
    app.extensions["object_store"] = R2ObjectStore.from_config(app.config)

def get_object_store():
    store = current_app.extensions.get("object_store")
    if store is None:
        store = R2ObjectStore.from_config(current_app.config)
        current_app.extensions["object_store"] = store
    return store
