from lidar_bridge.main import main

main()
