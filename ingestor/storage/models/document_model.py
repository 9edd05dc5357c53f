from tortoise import fields, models


class IngestedDocument(models.Model):
    """
    Latest extracted snapshot of a URL.
    """
    id = fields.BigIntField(pk=True)
    url = fields.CharField(max_length=2048, unique=True)
    fetched_at = fields.DatetimeField(index=True)

    title = fields.TextField(null=True)
    description = fields.TextField(null=True)
    body_text = fields.TextField()
    content_type = fields.CharField(max_length=255, null=True)
    http_status = fields.IntField()

    # sha256 of the raw response body, for dedup / change detection
    content_hash = fields.CharField(max_length=64, null=True, index=True)
    lang = fields.CharField(max_length=16, null=True)

    # conditional GET validators
    etag = fields.CharField(max_length=512, null=True)
    last_modified = fields.CharField(max_length=128, null=True)

    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "ingested_documents"

    def __str__(self):
        return f"{self.url} [{self.http_status}]"
