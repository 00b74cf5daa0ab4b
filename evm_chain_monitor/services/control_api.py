"""
监听器控制接口

基于 aiohttp.web 提供状态查询、配置刷新、启用/禁用监听器的 HTTP 接口
响应统一为 {success, data | message}
"""

from datetime import datetime, timezone
from typing import Any, Optional

from aiohttp import web

from evm_chain_monitor.utils.log_utils import get_logger

logger = get_logger(__name__)

API_PREFIX = '/api'


def json_response(success: bool, data: Any = None, message: Optional[str] = None,
                  status: int = 200, **extra: Any) -> web.Response:
    body = {'success': success}
    if data is not None:
        body['data'] = data
    if message is not None:
        body['message'] = message
    body.update(extra)
    return web.json_response(body, status=status)


def _parse_config_id(request: web.Request) -> Optional[int]:
    try:
        return int(request.match_info['config_id'])
    except (KeyError, ValueError):
        return None


class ControlAPI:
    """监听器控制接口"""

    def __init__(self, registry):
        self.registry = registry

    async def get_status(self, request: web.Request) -> web.Response:
        """GET /api/status"""
        try:
            return json_response(True, data=self.registry.get_all_status(), message='获取状态成功')
        except Exception as e:
            logger.error(f"获取状态失败: {e}")
            return json_response(False, message='获取状态失败', error=str(e), status=500)

    async def get_monitor_status(self, request: web.Request) -> web.Response:
        """GET /api/status/{config_id}"""
        config_id = _parse_config_id(request)
        if config_id is None:
            return json_response(False, message='配置ID无效', status=400)

        try:
            status = self.registry.get_monitor_status(config_id)
        except Exception as e:
            logger.error(f"获取监听器状态失败: {e}")
            return json_response(False, message='获取状态失败', error=str(e), status=500)

        if status is None:
            return json_response(False, message='监听器不存在', status=404)
        return json_response(True, data=status, message='获取状态成功')

    async def get_blocks(self, request: web.Request) -> web.Response:
        """GET /api/blocks - 所有监听器的区块高度"""
        try:
            block_info = [
                {
                    'config_id': status['config_id'],
                    'chain': status['chain'],
                    'symbol': status['symbol'],
                    'current_block_height': status['current_block_height'],
                    'is_running': status['is_running'],
                }
                for status in self.registry.get_all_status()
            ]
            return json_response(True, data=block_info, message='获取区块信息成功')
        except Exception as e:
            logger.error(f"获取区块信息失败: {e}")
            return json_response(False, message='获取区块信息失败', error=str(e), status=500)

    async def refresh(self, request: web.Request) -> web.Response:
        """POST /api/refresh"""
        try:
            result = await self.registry.refresh_configs()
            return json_response(True, data=result, message='配置刷新成功')
        except Exception as e:
            logger.error(f"刷新配置失败: {e}")
            return json_response(False, message='刷新配置失败', error=str(e), status=500)

    async def enable(self, request: web.Request) -> web.Response:
        """POST /api/enable/{config_id}"""
        return await self._toggle(request, enabled=True)

    async def disable(self, request: web.Request) -> web.Response:
        """POST /api/disable/{config_id}"""
        return await self._toggle(request, enabled=False)

    async def _toggle(self, request: web.Request, enabled: bool) -> web.Response:
        action = '启用' if enabled else '禁用'
        config_id = _parse_config_id(request)
        if config_id is None:
            return json_response(False, message='配置ID无效', status=400)

        try:
            if enabled:
                success = await self.registry.enable_monitor(config_id)
            else:
                success = await self.registry.disable_monitor(config_id)
        except Exception as e:
            logger.error(f"{action}监听器失败: {e}")
            return json_response(False, message=f'{action}监听器失败', error=str(e), status=500)

        if success:
            return json_response(True, message=f'{action}监听器成功')
        return json_response(False, message=f'{action}监听器失败', status=400)

    async def health(self, request: web.Request) -> web.Response:
        """GET /api/health"""
        return json_response(
            True,
            message='EVM区块监听服务运行正常',
            timestamp=datetime.now(timezone.utc).isoformat(),
        )


def create_app(registry) -> web.Application:
    """创建 aiohttp 应用并注册路由"""
    api = ControlAPI(registry)
    app = web.Application()
    app['registry'] = registry

    app.router.add_get(f"{API_PREFIX}/status", api.get_status)
    app.router.add_get(f"{API_PREFIX}/status/{{config_id}}", api.get_monitor_status)
    app.router.add_get(f"{API_PREFIX}/blocks", api.get_blocks)
    app.router.add_post(f"{API_PREFIX}/refresh", api.refresh)
    app.router.add_post(f"{API_PREFIX}/enable/{{config_id}}", api.enable)
    app.router.add_post(f"{API_PREFIX}/disable/{{config_id}}", api.disable)
    app.router.add_get(f"{API_PREFIX}/health", api.health)
    return app


async def start_api_server(registry, host: str = '0.0.0.0', port: int = 3000) -> web.AppRunner:
    """启动 HTTP 服务，返回 runner 以便关闭时 cleanup"""
    runner = web.AppRunner(create_app(registry))
    await runner.setup()
    site = web.TCPSite(runner, host=host, port=port)
    await site.start()
    logger.info(f"🌐 控制接口已启动: http://{host}:{port}{API_PREFIX}")
    return runner
