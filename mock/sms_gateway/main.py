from fastapi import FastAPI, HTTPException, Request
import os
import uuid

app = FastAPI(title="Mock SMS Gateway", version="1.0.0")
# MOCK_SMS_FAIL=1 makes every send return 500 so failed-message retry can be exercised
FAIL_SENDS = os.getenv("MOCK_SMS_FAIL", "0") == "1"
SENT = {}

@app.get("/health")
def health(): return {"status": "ok"}

@app.post("/v1/messages/batch/personalized/send")
async def send_personalized(request: Request):
    if FAIL_SENDS:
        raise HTTPException(status_code=500, detail="gateway unavailable")
    body = await request.json()
    recipients = body.get("personalizedRecipients") or []
    if not body.get("From") or not recipients:
        raise HTTPException(status_code=400, detail="From and personalizedRecipients are required")
    batch_id = str(uuid.uuid4())
    messages = []
    for r in recipients:
        message_id = str(uuid.uuid4())
        SENT[message_id] = {"messageId": message_id, "to": r.get("To"), "content": r.get("Content"), "status": "Delivered"}
        messages.append({"messageId": message_id, "to": r.get("To"), "status": "sent"})
    return {"batchId": batch_id, "data": {"messages": messages}}

@app.get("/v1/messages/{message_id}")
def message_status(message_id: str):
    if message_id not in SENT:
        raise HTTPException(status_code=404, detail="message not found")
    return SENT[message_id]
