import asyncio
import time
from unittest.mock import AsyncMock, Mock

from kindle_bot.services.bot_service import BotHandler
from kindle_bot.services.polling_service import PollingWorker, parse_update


def _raw(update_id, text="hi", user_id=7):
    return {
        "update_id": update_id,
        "message": {
            "message_id": 1,
            "date": 1702000000,
            "chat": {"id": user_id, "type": "private"},
            "from": {"id": user_id, "first_name": "Ann"},
            "text": text,
        },
    }


class TestParseUpdate:
    def test_valid(self):
        update = parse_update(_raw(3))
        assert update.update_id == 3
        assert update.message.text == "hi"

    def test_malformed(self):
        assert parse_update({"update_id": "x", "message": {"chat": 1}}) is None


class TestPollingWorker:
    def test_poll_once_dispatches_and_advances_offset(self):
        telegram = Mock()
        telegram.get_updates.return_value = [_raw(10), _raw(11, "dune")]
        handler = Mock()
        handler.handle_update = AsyncMock()
        worker = PollingWorker(telegram, handler, timeout=1)

        async def run():
            count = await worker.poll_once()
            await asyncio.gather(*list(worker._inflight), return_exceptions=True)
            return count

        assert asyncio.run(run()) == 2
        assert worker.offset == 12
        telegram.get_updates.assert_called_once_with(0, 1)
        texts = [call.args[0].message.text for call in handler.handle_update.await_args_list]
        assert sorted(texts) == ["dune", "hi"]

    def test_malformed_update_is_skipped_but_acknowledged(self):
        telegram = Mock()
        telegram.get_updates.return_value = [{"update_id": 20, "message": {"bogus": True}}]
        handler = Mock()
        handler.handle_update = AsyncMock()
        worker = PollingWorker(telegram, handler)

        asyncio.run(worker.poll_once())

        assert worker.offset == 21
        handler.handle_update.assert_not_awaited()

    def test_handler_error_does_not_stop_other_updates(self):
        telegram = Mock()
        telegram.get_updates.return_value = [_raw(1, "boom"), _raw(2, "ok")]
        handled = []

        async def handle(update):
            if update.message.text == "boom":
                raise RuntimeError("boom")
            handled.append(update.update_id)

        handler = Mock()
        handler.handle_update = handle
        worker = PollingWorker(telegram, handler)

        async def run():
            await worker.poll_once()
            await asyncio.gather(*list(worker._inflight), return_exceptions=True)

        asyncio.run(run())
        assert handled == [2]

    def test_start_and_stop(self):
        def get_updates(offset, timeout):
            time.sleep(0.005)
            return []

        telegram = Mock()
        telegram.get_updates.side_effect = get_updates
        handler = Mock()
        worker = PollingWorker(telegram, handler, retry_delay=0.01)

        async def run():
            worker.start()
            await asyncio.sleep(0.05)
            await worker.stop()

        asyncio.run(run())
        assert worker._task is None
        assert telegram.get_updates.called


class SlowMessenger:
    def __init__(self, latency):
        self.latency = latency
        self.sent = []

    def send_message(self, chat_id, text, reply_markup=None, parse_mode=None):
        time.sleep(self.latency)
        self.sent.append(chat_id)
        return {"message_id": len(self.sent)}

    def edit_message(self, chat_id, message_id, text, reply_markup=None, parse_mode=None):
        time.sleep(self.latency)
        return {"message_id": message_id}

    def answer_callback_query(self, callback_query_id, text=""):
        time.sleep(self.latency)
        return {}


class TestConcurrentUsers:
    def test_slow_messenger_does_not_serialize_users(self, localizer, manager, searcher, deliverer):
        latency = 0.3
        users = [101, 102, 103, 104]
        messenger = SlowMessenger(latency)
        handler = BotHandler(localizer, manager, messenger, searcher, deliverer)
        worker = PollingWorker(Mock(), handler)

        async def run():
            started = time.monotonic()
            for offset, user_id in enumerate(users):
                worker.dispatch(_raw(offset + 1, "/help", user_id=user_id))
            await asyncio.gather(*list(worker._inflight))
            return time.monotonic() - started

        elapsed = asyncio.run(run())

        assert sorted(messenger.sent) == users
        assert elapsed < latency * 2
