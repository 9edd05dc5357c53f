from tortoise import fields, models


class CrawlQueueItem(models.Model):
    """
    Crawl queue row. Claimed and rescheduled through raw SQL in
    PostgresCrawlQueue; the model only declares the schema.
    """
    id = fields.BigIntField(pk=True)
    url = fields.CharField(max_length=2048, unique=True)
    discovered_via = fields.CharField(max_length=32, null=True)

    # higher = claimed sooner
    priority = fields.IntField(default=0, index=True)

    # NULL = parked, never due again
    next_fetch_at = fields.DatetimeField(null=True, index=True)

    attempts = fields.IntField(default=0)
    last_status = fields.IntField(null=True)
    last_error = fields.TextField(null=True)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "crawl_queue"

    def __str__(self):
        return f"{self.url} [p={self.priority}]"
