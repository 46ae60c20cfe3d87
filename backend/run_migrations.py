"""
執行所有遷移腳本的工具
"""

import os
import importlib.util
import logging

# 設置logger
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

def run_migrations():
    """依檔名順序執行 migrations 目錄下的所有遷移腳本，返回失敗數"""
    migrations_dir = os.path.join(os.path.dirname(__file__), 'migrations')

    migration_files = sorted(f for f in os.listdir(migrations_dir)
                             if f.endswith('.py') and not f.startswith('__'))

    logger.info(f"找到 {len(migration_files)} 個遷移腳本:")
    for i, file in enumerate(migration_files):
        logger.info(f"{i+1}. {file}")

    failures = 0
    for file in migration_files:
        full_path = os.path.join(migrations_dir, file)
        module_name = file[:-3]

        try:
            spec = importlib.util.spec_from_file_location(module_name, full_path)
            module = importlib.util.module_from_spec(spec)
            spec.loader.exec_module(module)

            if hasattr(module, 'run_migration'):
                logger.info(f"執行遷移: {file}")
                if module.run_migration():
                    logger.info(f"遷移 {file} 成功完成")
                else:
                    failures += 1
                    logger.warning(f"遷移 {file} 失敗")
            else:
                logger.warning(f"跳過 {file}: 沒有找到 run_migration 函數")
        except Exception as e:
            failures += 1
            logger.error(f"執行遷移 {file} 時發生錯誤: {str(e)}")

    logger.info(f"所有遷移執行完畢，失敗 {failures} 個")
    return failures

if __name__ == "__main__":
    raise SystemExit(1 if run_migrations() else 0)
